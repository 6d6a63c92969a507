"""
Shared fixtures: a realistic profile page, reader event streams and a
scraper double that never touches the network.
"""

import json
import pytest

from tiktok_cpm.apis.jina_scraper import ScrapeResult
from tiktok_cpm.apis.models import (
    NormalizedProfile,
    ProfileUser,
    ProfileVideo,
    UserStats,
    VideoStats,
)


PROFILE_HTML = """
<html>
<head>
  <title>Jane Doe (@janedoe) | TikTok</title>
  <meta property="og:image" content="https://cdn.example.com/og-avatar.jpg">
  <meta name="description" content="Jane Doe (@janedoe) on TikTok | 5.6M Likes. 1.2M Followers. Weeknight recipes.Watch the latest video from Jane Doe.">
</head>
<body>
  <h1 data-e2e="user-title">Jane Doe</h1>
  <h2 data-e2e="user-subtitle">@janedoe</h2>
  <strong data-e2e="followers-count">1.2M</strong>
  <strong data-e2e="likes-count">5.6M</strong>
  <div data-e2e="user-bio">Recipes every day</div>
  <div data-e2e="user-post-item-list">
    <div data-e2e="user-post-item">
      <div class="video-badge-pinned">Pinned</div>
      <a href="https://www.tiktok.com/@janedoe/video/7000000000000000001">
        <img src="https://cdn.example.com/thumb1.jpg" alt="My favourite dish">
      </a>
      <strong data-e2e="video-views">9.9M</strong>
    </div>
    <div data-e2e="user-post-item">
      <a href="/@janedoe/video/7000000000000000002">
        <img src="https://cdn.example.com/thumb2.jpg" alt="Pasta night">
      </a>
      <strong data-e2e="video-views">12.5K</strong>
    </div>
    <div data-e2e="user-post-item">
      <a href="https://www.tiktok.com/@janedoe/video/7000000000000000003">
        <img src="https://cdn.example.com/thumb3.jpg" alt="">
      </a>
      <strong data-e2e="video-views">800</strong>
    </div>
  </div>
</body>
</html>
"""


def build_event_stream(html: str) -> str:
    """Wrap a document the way the reader streams it back."""
    return "\n".join([
        "event: message",
        "data: {not json",
        f"data: {json.dumps({'html': html})}",
        "",
    ])


def build_profile(views, username="creator", followers=1000) -> NormalizedProfile:
    return NormalizedProfile(
        user=ProfileUser(
            username=username,
            display_name=username.title(),
            stats=UserStats(followers=followers, total_likes=0),
        ),
        videos=[
            ProfileVideo(
                id=str(index + 1),
                title=f"Clip {index + 1}",
                url=f"https://www.tiktok.com/@{username}/video/{index + 1}",
                stats=VideoStats(views=view),
            )
            for index, view in enumerate(views)
        ],
    )


def creator_page(username: str, followers: int, views) -> str:
    items = "".join(
        f'<div data-e2e="user-post-item"><a href="/@{username}/video/{index + 1}">'
        f'<img src="t.jpg" alt="Clip {index + 1}"></a><strong>{view}</strong></div>'
        for index, view in enumerate(views)
    )
    return (
        f"<html><head><title>{username} (@{username}) | TikTok</title></head><body>"
        f'<strong data-e2e="followers-count">{followers}</strong>{items}</body></html>'
    )


class FakeScraper:
    """Serves canned results per URL; exceptions in the table are raised."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    async def scrape(self, url: str) -> ScrapeResult:
        self.calls.append(url)
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def profile_html():
    return PROFILE_HTML


@pytest.fixture
def event_stream():
    return build_event_stream


@pytest.fixture
def make_profile():
    return build_profile


@pytest.fixture
def creator_stream():
    """Event stream for a minimal creator page with the given views."""
    def _creator_stream(username, followers, views):
        return build_event_stream(creator_page(username, followers, views))
    return _creator_stream


@pytest.fixture
def fake_scraper():
    return FakeScraper
