import re
import json
import logging
from typing import Dict, Any, List, Optional, Tuple, Callable
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from bs4 import BeautifulSoup, Tag

from tiktok_cpm.apis.event_stream import extract_html_from_event_stream
from tiktok_cpm.apis.models import (
    RawUser,
    RawVideo,
    TikTokData,
    NormalizedProfile,
    ProfileUser,
    ProfileVideo,
    UserStats,
    VideoStats,
)

logger = logging.getLogger(__name__)

router = APIRouter()

TIKTOK_BASE_URL = "https://www.tiktok.com"
REHYDRATION_SCRIPT_ID = "__UNIVERSAL_DATA_FOR_REHYDRATION__"

MAGNITUDE_SUFFIXES = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}

_NUMBER = r"\d+(?:[.,]\d+)*"
MAGNITUDE_RE = re.compile(rf"^({_NUMBER}|\.\d+)\s*([KMB])?", re.IGNORECASE)
MAGNITUDE_TOKEN_RE = re.compile(rf"({_NUMBER}\s*[KMB]?)", re.IGNORECASE)
FOLLOWERS_LABEL_RE = re.compile(rf"({_NUMBER}\s*[KMB]?)\s*Followers?", re.IGNORECASE)
LIKES_LABEL_RE = re.compile(rf"({_NUMBER}\s*[KMB]?)\s*Likes?", re.IGNORECASE)
TITLE_USERNAME_RE = re.compile(r"@([\w.]+)")
STATS_BLOCK_RE = re.compile(r'"stats"\s*:\s*(\{[^}]+\})')
META_BIO_RE = re.compile(r"Followers\.\s*([^.]+)")
VIDEO_ID_RE = re.compile(r"/video/(\d+)")

STAT_KEYS = ("followerCount", "heartCount", "likeCount")

FOLLOWERS_SELECTOR = '[data-e2e*="followers"], [class*="follower"], [aria-label*="Followers"]'
LIKES_SELECTOR = '[data-e2e*="likes"], [class*="like"], [aria-label*="Likes"]'
HEADING_SELECTOR = 'h1, h2, [data-e2e*="user-title"], [data-e2e*="user-subtitle"]'
AVATAR_SELECTOR = 'img[class*="avatar"], img[data-e2e*="avatar"], span[class*="avatar"] img'
# In priority order; the subtitle often repeats the @handle
BIO_SELECTORS = ['[data-e2e="user-bio"]', '[class*="user-desc"]', 'h2[data-e2e="user-subtitle"]']
VIDEO_LINK_SELECTOR = 'a[href*="/video/"]'
VIEW_COUNT_SELECTOR = '[class*="view"], [data-e2e*="view"], strong'
PINNED_MARKER_SELECTOR = (
    '[class*="pinned"], [data-e2e*="pinned"], svg[data-e2e="pin-icon"], [aria-label*="pinned" i]'
)

# Tried in order until one selector yields at least one video. Every node the
# third selector keeps wraps an anchor the second already saw, so it is a last
# resort that never finds a video the second rejected.
VIDEO_NODE_SELECTORS = [
    '[data-e2e="user-post-item"]',
    '[class*="video-feed-item"], a[href*="/video/"]',
    'div[class*="DivWrapper"], div[class*="video"], div[class*="item"]',
]

class ParseTikTokRequest(BaseModel):
    jinaResponse: Optional[str] = None

class ParseTikTokResponse(BaseModel):
    success: bool
    data: Optional[NormalizedProfile] = None
    error: Optional[str] = None
    details: Optional[str] = None

# Helper to convert strings like "1.2M", "523K" or "1,234" to numbers.
# Returns 0 for anything it cannot read.
def parse_magnitude(text: Optional[str]) -> float:
    if not text:
        return 0

    match = MAGNITUDE_RE.match(text.strip())
    if not match:
        return 0

    try:
        number = float(match.group(1).replace(",", ""))
    except ValueError:
        return 0

    suffix = (match.group(2) or "").upper()
    return number * MAGNITUDE_SUFFIXES.get(suffix, 1)

def _count(text: Optional[str]) -> int:
    return int(round(parse_magnitude(text)))

# Stats in embedded JSON are usually ints but some page revisions ship strings
def _number(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(round(value)))
    if isinstance(value, str):
        return _count(value)
    return 0

def _script_text(script: Tag) -> str:
    return script.string or script.get_text() or ""

def _load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except ValueError:
        # Some proxies hand back the block HTML-escaped
        return json.loads(content.replace("&quot;", '"'))

# --- user field strategies ---------------------------------------------------
# Each strategy looks at the document on its own and returns the fields it found.

def _username_from_title(soup: BeautifulSoup) -> Dict[str, Any]:
    title = soup.find("title")
    if not title:
        return {}
    match = TITLE_USERNAME_RE.search(title.get_text())
    return {"username": match.group(1).rstrip(".")} if match else {}

def _avatar_from_meta(soup: BeautifulSoup) -> Dict[str, Any]:
    meta = soup.find("meta", attrs={"property": "og:image"})
    if meta and meta.get("content"):
        return {"image_url": meta["content"]}
    return {}

def _stats_from_exact_elements(soup: BeautifulSoup) -> Dict[str, Any]:
    found: Dict[str, Any] = {}
    followers = soup.select_one('[data-e2e="followers-count"]')
    if followers is not None:
        found["follower_count"] = _count(followers.get_text(strip=True))
    likes = soup.select_one('[data-e2e="likes-count"]')
    if likes is not None:
        found["total_likes"] = _count(likes.get_text(strip=True))
    return found

def _labelled_count(soup: BeautifulSoup, selector: str, pattern: re.Pattern) -> int:
    count = 0
    for node in soup.select(selector):
        for text in (node.get_text(" ", strip=True), node.get("aria-label") or ""):
            match = pattern.search(text)
            if match:
                # Later elements override earlier ones
                count = _count(match.group(1))
                break
    return count

def _stats_from_labelled_elements(soup: BeautifulSoup) -> Dict[str, Any]:
    return {
        "follower_count": _labelled_count(soup, FOLLOWERS_SELECTOR, FOLLOWERS_LABEL_RE),
        "total_likes": _labelled_count(soup, LIKES_SELECTOR, LIKES_LABEL_RE),
    }

def _stats_object_from_script(content: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(content)
    except ValueError:
        match = STATS_BLOCK_RE.search(content)
        if not match:
            return None
        try:
            stats = json.loads(match.group(1))
        except ValueError:
            return None
        return stats if isinstance(stats, dict) else None

    if isinstance(data, dict) and isinstance(data.get("stats"), dict):
        return data["stats"]
    return None

def _stats_from_embedded_script(soup: BeautifulSoup) -> Dict[str, Any]:
    found: Dict[str, Any] = {}
    for script in soup.find_all("script"):
        content = _script_text(script)
        if not any(key in content for key in STAT_KEYS):
            continue
        stats = _stats_object_from_script(content)
        if not stats:
            continue
        followers = _number(stats.get("followerCount"))
        likes = _number(stats.get("heartCount")) or _number(stats.get("likeCount"))
        if followers:
            found["follower_count"] = followers
        if likes:
            found["total_likes"] = likes
    return found

def _find_user_info(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, dict):
        user_info = data.get("userInfo")
        if isinstance(user_info, dict):
            return user_info
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None

    for child in children:
        user_info = _find_user_info(child)
        if user_info is not None:
            return user_info
    return None

def _user_info_from_rehydration_data(soup: BeautifulSoup) -> Dict[str, Any]:
    script = soup.find("script", id=REHYDRATION_SCRIPT_ID)
    if script is None:
        return {}

    try:
        data = _load_json(_script_text(script))
    except ValueError as e:
        logger.warning(f"Could not decode rehydration data block: {str(e)}")
        return {}

    user_info = _find_user_info(data)
    if not user_info:
        return {}
    logger.info("Found userInfo in rehydration data block")

    user = user_info.get("user") if isinstance(user_info.get("user"), dict) else {}
    stats = user_info.get("stats") if isinstance(user_info.get("stats"), dict) else {}
    if not stats and isinstance(user_info.get("statsV2"), dict):
        stats = user_info["statsV2"]

    return {
        "username": user.get("uniqueId") or "",
        "display_name": user.get("nickname") or "",
        "image_url": user.get("avatarLarger") or user.get("avatarMedium") or user.get("avatarThumb") or "",
        "description": user.get("signature") or None,
        "follower_count": _number(stats.get("followerCount")),
        "total_likes": _number(stats.get("heartCount")) or _number(stats.get("heart")),
    }

def _names_from_headings(soup: BeautifulSoup) -> Dict[str, Any]:
    found: Dict[str, Any] = {}
    for node in soup.select(HEADING_SELECTOR):
        text = node.get_text(strip=True)
        if not text:
            continue
        if text.startswith("@"):
            found.setdefault("username", text[1:])
        else:
            found.setdefault("display_name", text)
    return found

def _avatar_from_image(soup: BeautifulSoup) -> Dict[str, Any]:
    avatar = soup.select_one(AVATAR_SELECTOR)
    if avatar is not None and avatar.get("src"):
        return {"image_url": avatar["src"]}
    return {}

def _bio_from_element(soup: BeautifulSoup) -> Dict[str, Any]:
    for selector in BIO_SELECTORS:
        bio = soup.select_one(selector)
        if bio is not None and bio.get_text(strip=True):
            return {"description": bio.get_text(strip=True)}
    return {}

def _bio_from_meta_description(soup: BeautifulSoup) -> Dict[str, Any]:
    meta = soup.find("meta", attrs={"name": "description"})
    if not meta or not meta.get("content"):
        return {}
    match = META_BIO_RE.search(meta["content"])
    return {"description": match.group(1).strip()} if match else {}

UserStrategy = Callable[[BeautifulSoup], Dict[str, Any]]

# (fields it can provide, strategy, authoritative).
# Non-authoritative strategies only fill fields that are still empty or zero,
# and are skipped once every field they provide is set.
USER_STRATEGIES: List[Tuple[Tuple[str, ...], UserStrategy, bool]] = [
    (("username",), _username_from_title, False),
    (("image_url",), _avatar_from_meta, False),
    (("follower_count", "total_likes"), _stats_from_exact_elements, False),
    (("follower_count", "total_likes"), _stats_from_labelled_elements, False),
    (("follower_count", "total_likes"), _stats_from_embedded_script, False),
    (
        ("username", "display_name", "image_url", "follower_count", "total_likes", "description"),
        _user_info_from_rehydration_data,
        True,
    ),
    (("display_name", "username"), _names_from_headings, False),
    (("image_url",), _avatar_from_image, False),
    (("description",), _bio_from_element, False),
    (("description",), _bio_from_meta_description, False),
]

def _merge_user_fields(user: RawUser, found: Dict[str, Any], authoritative: bool) -> None:
    for field, value in found.items():
        if not value:
            continue
        if authoritative or not getattr(user, field):
            setattr(user, field, value)

def extract_user(soup: BeautifulSoup) -> RawUser:
    user = RawUser()
    for fields, strategy, authoritative in USER_STRATEGIES:
        if not authoritative and all(getattr(user, field) for field in fields):
            continue
        _merge_user_fields(user, strategy(soup), authoritative)
    return user

# --- videos ------------------------------------------------------------------

def _has_pinned_marker(node: Tag) -> bool:
    own_markers = " ".join(node.get("class") or []) + " " + (node.get("data-e2e") or "")
    return "pinned" in own_markers.lower()

# Any one signal is enough: a marker class/attribute, the pin icon,
# an aria-label or the word "pinned" in the text
def is_pinned(node: Tag) -> bool:
    if _has_pinned_marker(node):
        return True
    if node.select_one(PINNED_MARKER_SELECTOR) is not None:
        return True
    return "pinned" in node.get_text(" ").lower()

def _video_link(node: Tag) -> Optional[Tag]:
    if node.name == "a" and "/video/" in (node.get("href") or ""):
        return node
    return node.select_one(VIDEO_LINK_SELECTOR)

def _absolute_url(href: str) -> str:
    if href.startswith("http"):
        return href
    return f"{TIKTOK_BASE_URL}{href}"

# The largest decoded number among the view-count candidates wins
def _view_count(node: Tag) -> int:
    views = 0
    for candidate in node.select(VIEW_COUNT_SELECTOR):
        match = MAGNITUDE_TOKEN_RE.search(candidate.get_text(strip=True))
        if match:
            views = max(views, _count(match.group(1)))
    return views

def _video_ids(node: Tag) -> set:
    links = node.select(VIDEO_LINK_SELECTOR)
    if node.name == "a":
        links.append(node)
    ids = set()
    for link in links:
        match = VIDEO_ID_RE.search(link.get("href") or "")
        if match:
            ids.add(match.group(1))
    return ids

def video_from_node(node: Tag) -> Optional[RawVideo]:
    link = _video_link(node)
    if link is None:
        return None
    href = link.get("href") or ""
    match = VIDEO_ID_RE.search(href)
    if not match:
        return None

    image = node.find("img")
    return RawVideo(
        id=match.group(1),
        title=(image.get("alt") or "") if image else "",
        thumbnail_url=(image.get("src") or "") if image else "",
        view_count=_view_count(node),
        url=_absolute_url(href),
    )

def videos_from_nodes(nodes: List[Tag], pinned_ids: set) -> List[RawVideo]:
    videos: List[RawVideo] = []
    for node in nodes:
        # Grid and list containers wrap several videos; only single-video nodes count
        ids = _video_ids(node)
        if len(ids) != 1:
            continue
        if is_pinned(node):
            pinned_ids.update(ids)
            continue
        video = video_from_node(node)
        if video:
            videos.append(video)
    return videos

def discover_videos(soup: BeautifulSoup) -> Tuple[List[RawVideo], int]:
    pinned_ids: set = set()
    videos: List[RawVideo] = []
    for selector in VIDEO_NODE_SELECTORS:
        videos = videos_from_nodes(soup.select(selector), pinned_ids)
        if videos:
            break

    # Nested matches can surface a pinned video through an inner node
    videos = [video for video in videos if video.id not in pinned_ids]
    return videos, len(pinned_ids)

# First sighting wins. Selectors return nodes in document order, so a wrapper
# is seen before the bare anchor nested inside it, which carries less context.
def dedupe_videos(videos: List[RawVideo]) -> List[RawVideo]:
    unique: Dict[str, RawVideo] = {}
    for video in videos:
        unique.setdefault(video.id, video)
    return list(unique.values())

def extract_tiktok_data(html: str) -> TikTokData:
    """Extract the user and non-pinned video records from a TikTok profile page."""
    soup = BeautifulSoup(html, "html.parser")

    user = extract_user(soup)
    videos, pinned_skipped = discover_videos(soup)
    unique_videos = dedupe_videos(videos)

    logger.info(
        f"Found {len(unique_videos)} non-pinned videos after deduplication "
        f"({pinned_skipped} pinned videos skipped)"
    )
    return TikTokData(user=user, videos=unique_videos)

def parse_tiktok_data_from_event_stream(stream_text: str) -> TikTokData:
    """Unwrap the reader's event stream and extract the profile data from it."""
    logger.info(f"Parsing TikTok data from event stream, length: {len(stream_text or '')}")
    html = extract_html_from_event_stream(stream_text)
    data = extract_tiktok_data(html)
    logger.info(
        f"Extracted @{data.user.username or '?'}: {data.user.follower_count} followers, "
        f"{len(data.videos)} videos"
    )
    return data

def format_tiktok_data(data: TikTokData) -> NormalizedProfile:
    """Map raw extractor records onto the normalized profile shape."""
    return NormalizedProfile(
        user=ProfileUser(
            username=data.user.username,
            display_name=data.user.display_name or data.user.username,
            profile_image_url=data.user.image_url,
            description=data.user.description or "",
            stats=UserStats(
                followers=data.user.follower_count or 0,
                total_likes=data.user.total_likes or 0,
            ),
        ),
        videos=[
            ProfileVideo(
                id=video.id,
                title=video.title or "Untitled",
                url=video.url,
                thumbnail_url=video.thumbnail_url,
                stats=VideoStats(views=video.view_count or 0),
            )
            for video in data.videos
        ],
    )

@router.post("/parse_tiktok", response_model=ParseTikTokResponse)
async def parse_tiktok(request: ParseTikTokRequest):
    """Parse a raw reader response into a normalized TikTok profile"""
    if not request.jinaResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "No Jina response provided"},
        )

    try:
        data = parse_tiktok_data_from_event_stream(request.jinaResponse)
        return ParseTikTokResponse(success=True, data=format_tiktok_data(data))
    except Exception as e:
        logger.exception(f"Error parsing TikTok data: {str(e)}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to parse TikTok data",
                "details": str(e),
            },
        )
