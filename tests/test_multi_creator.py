"""
Tests for the multi-creator comparison.

Tests cover:
- Per-creator isolation of failures
- Best creator, CPM range and combined followers
- Radar scores and recommendation lines
- Concurrent fan-out
"""

import asyncio
import pytest

from tiktok_cpm.apis.errors import InvalidAnalysisInputError, ScraperNotConfiguredError
from tiktok_cpm.apis.jina_scraper import ScrapeResult
from tiktok_cpm.apis.models import (
    AnalyticsSummary,
    CreatorAnalysis,
    NormalizedProfile,
    ProfileUser,
    UserStats,
)
from tiktok_cpm.apis.multi_creator import (
    ALL_FAILED_MESSAGE,
    analyze_creator,
    analyze_creators,
    build_comparison_report,
    build_radar_chart,
    build_recommendations,
    creator_labels,
)


ALICE = "https://www.tiktok.com/@alice"
BOB = "https://www.tiktok.com/@bob"
CAROL = "https://www.tiktok.com/@carol"


@pytest.fixture
def two_creators_and_a_failure(fake_scraper, creator_stream):
    return fake_scraper({
        ALICE: ScrapeResult(success=True, data=creator_stream("alice", 1000, [1000, 1000])),
        BOB: ScrapeResult(success=True, data=creator_stream("bob", 3000, [4000, 4000])),
        CAROL: ScrapeResult(success=False, error="Jina API error: 503"),
    })


def radar_values(report, metric):
    return next(point.values for point in report.radar_chart if point.metric == metric)


# =============================================================
# TEST: analyze_creators
# =============================================================

class TestAnalyzeCreators:
    """Test the end-to-end comparison over several URLs."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, two_creators_and_a_failure):
        """One failing creator does not affect the others."""
        report = await analyze_creators([ALICE, BOB, CAROL], two_creators_and_a_failure, 10, 10)

        assert [a.url for a in report.analyses] == [ALICE, BOB, CAROL]
        assert report.analyses[0].error is None
        assert report.analyses[0].analytics.cpm == pytest.approx(10)
        assert report.analyses[2].error == "Jina API error: 503"
        assert report.analyses[2].profile is None
        assert report.error is None

    @pytest.mark.asyncio
    async def test_aggregates_ignore_failures(self, two_creators_and_a_failure):
        """Best creator, CPM range and followers only use successful creators."""
        report = await analyze_creators([CAROL, ALICE, BOB], two_creators_and_a_failure, 10, 10)

        assert report.best_creator.url == BOB
        assert report.cpm_range.average == pytest.approx(6.25)
        assert report.cpm_range.minimum == pytest.approx(2.5)
        assert report.cpm_range.maximum == pytest.approx(10)
        assert report.combined_followers == 4000
        assert [point.name for point in report.comparison_chart] == ["@alice", "@bob"]
        assert report.comparison_chart[1].avg_views == pytest.approx(4000)

    @pytest.mark.asyncio
    async def test_radar_scores(self, two_creators_and_a_failure):
        """Scores are relative to the best in the batch and rounded."""
        report = await analyze_creators([ALICE, BOB, CAROL], two_creators_and_a_failure, 10, 10)

        assert [point.metric for point in report.radar_chart] == [
            "CPM Efficiency", "Avg Views", "Virality", "Consistency", "Followers",
        ]
        assert radar_values(report, "CPM Efficiency") == {"@alice": 0, "@bob": 75}
        assert radar_values(report, "Avg Views") == {"@alice": 25, "@bob": 100}
        assert radar_values(report, "Virality") == {"@alice": 0, "@bob": 0}
        assert radar_values(report, "Consistency") == {"@alice": 100, "@bob": 100}
        assert radar_values(report, "Followers") == {"@alice": 33, "@bob": 100}

    @pytest.mark.asyncio
    async def test_recommendations(self, two_creators_and_a_failure):
        report = await analyze_creators([ALICE, BOB, CAROL], two_creators_and_a_failure, 10, 10)

        assert report.recommendations == [
            "Focus budget on @bob for the best return (2.50 USD CPM)",
            "Consider diversifying with 2 creators for broader reach",
        ]

    @pytest.mark.asyncio
    async def test_all_failed(self, fake_scraper):
        """When nothing succeeds the report carries the batch error."""
        scraper = fake_scraper({
            ALICE: ScrapeResult(success=False, error="Jina API error: 500"),
            BOB: ScraperNotConfiguredError("JINA_API_KEY is not set"),
        })
        report = await analyze_creators([ALICE, BOB], scraper, 10, 10)

        assert report.error == ALL_FAILED_MESSAGE
        assert report.best_creator is None
        assert report.radar_chart == []
        assert [a.error for a in report.analyses] == ["Jina API error: 500", "JINA_API_KEY is not set"]

    @pytest.mark.asyncio
    async def test_runs_concurrently(self, creator_stream):
        """Every scrape is in flight before any of them finishes."""
        stream = creator_stream("same", 10, [100])

        class BarrierScraper:
            def __init__(self, expected):
                self.expected = expected
                self.started = 0
                self.all_started = asyncio.Event()

            async def scrape(self, url):
                self.started += 1
                if self.started == self.expected:
                    self.all_started.set()
                await asyncio.wait_for(self.all_started.wait(), timeout=1)
                return ScrapeResult(success=True, data=stream)

        report = await analyze_creators([ALICE, BOB, CAROL], BarrierScraper(3), 10, 10)
        assert all(a.error is None for a in report.analyses)


class TestAnalyzeCreator:
    """Test the single-creator pipeline used by the fan-out."""

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error(self, fake_scraper):
        scraper = fake_scraper({ALICE: RuntimeError("boom")})
        analysis = await analyze_creator(ALICE, scraper, 10, 10, "USD")

        assert analysis.error == "boom"
        assert analysis.analytics is None

    @pytest.mark.asyncio
    async def test_currency_is_applied(self, fake_scraper, creator_stream):
        scraper = fake_scraper({ALICE: ScrapeResult(success=True, data=creator_stream("alice", 1, [1000]))})
        analysis = await analyze_creator(ALICE, scraper, 100, 10, "GBP")

        assert analysis.analytics.cost_in_usd == pytest.approx(127)
        assert analysis.analytics.cpm == pytest.approx(127)


# =============================================================
# TEST: Report Building
# =============================================================

def make_analysis(username, cpm, average_views=1000.0, virality_rate=0.0, followers=100):
    return CreatorAnalysis(
        url=f"https://www.tiktok.com/@{username}",
        profile=NormalizedProfile(
            user=ProfileUser(
                username=username,
                display_name=username,
                stats=UserStats(followers=followers),
            ),
        ),
        analytics=AnalyticsSummary(
            total_views=int((average_views or 0) * 2),
            average_views=average_views,
            cost_in_usd=10,
            cpm=cpm,
            virality_rate=virality_rate,
            total_videos=2,
        ),
    )


class TestBuildComparisonReport:
    """Test aggregation over hand-built analyses."""

    def test_tie_keeps_first(self):
        report = build_comparison_report([make_analysis("first", 5.0), make_analysis("second", 5.0)])
        assert report.best_creator.profile.user.username == "first"

    def test_undefined_cpm_is_never_best(self):
        """Creators whose CPM is undefined are compared but not ranked."""
        report = build_comparison_report([make_analysis("silent", None, average_views=0.0), make_analysis("loud", 8.0)])

        assert report.best_creator.profile.user.username == "loud"
        assert report.cpm_range.minimum == pytest.approx(8.0)
        assert report.combined_followers == 200
        assert radar_values(report, "CPM Efficiency") == {"@silent": None, "@loud": 0}

    def test_no_priced_creator(self):
        report = build_comparison_report([make_analysis("silent", None, average_views=0.0)])

        assert report.error is None
        assert report.best_creator is None
        assert report.cpm_range.average is None
        assert report.recommendations == ["Consider diversifying with 1 creators for broader reach"]

    def test_high_virality_recommendation(self):
        valid = [
            make_analysis("a", 4.0, virality_rate=25.0),
            make_analysis("b", 6.0, virality_rate=21.0),
            make_analysis("c", 9.0, virality_rate=5.0),
        ]
        recommendations = build_recommendations(valid, valid[0])

        assert recommendations[1] == "@a, @b have high viral potential"
        assert recommendations[2] == "Consider diversifying with 3 creators for broader reach"

    def test_single_viral_creator_wording(self):
        valid = [make_analysis("a", 4.0, virality_rate=25.0)]
        assert build_recommendations(valid, valid[0])[1] == "@a has high viral potential"

    def test_radar_rounds_half_up(self):
        """12.5 rounds to 13, as in the dashboard."""
        valid = [make_analysis("a", 1.0, virality_rate=12.5)]
        assert radar_values(build_comparison_report(valid), "Virality") == {"@a": 13}
        assert build_radar_chart([]) == []


# =============================================================
# TEST: Creator Labels
# =============================================================

HANDLELESS_PAGE = (
    "<html><head><title>TikTok</title></head><body>"
    '<strong data-e2e="followers-count">{followers}</strong>'
    '<div data-e2e="user-post-item"><a href="/video/1"><img alt="clip"></a>'
    "<strong>{views}</strong></div></body></html>"
)


class TestCreatorLabels:
    """Every successful creator keeps its own entry in the chart series."""

    def test_labels_are_unique(self):
        valid = [
            make_analysis("alice", 5.0),
            make_analysis("", 6.0),
            make_analysis("alice", 7.0),
            make_analysis("alice", 8.0),
        ]
        assert creator_labels(valid) == [
            "@alice",
            "https://www.tiktok.com/@",
            "@alice (2)",
            "@alice (3)",
        ]

    @pytest.mark.asyncio
    async def test_creators_without_username_keep_separate_scores(self, fake_scraper, event_stream):
        first = "https://www.tiktok.com/@first"
        second = "https://www.tiktok.com/@second"
        scraper = fake_scraper({
            first: ScrapeResult(success=True, data=event_stream(HANDLELESS_PAGE.format(followers=100, views=500))),
            second: ScrapeResult(success=True, data=event_stream(HANDLELESS_PAGE.format(followers=300, views=1000))),
        })
        report = await analyze_creators([first, second], scraper, 10, 10)

        assert [a.profile.user.username for a in report.analyses] == ["", ""]
        for point in report.radar_chart:
            assert set(point.values) == {first, second}
        assert radar_values(report, "CPM Efficiency") == {first: 0, second: 50}
        assert radar_values(report, "Followers") == {first: 33, second: 100}
        assert [point.name for point in report.comparison_chart] == [first, second]
        assert report.recommendations[0] == f"Focus budget on {second} for the best return (10.00 USD CPM)"

    @pytest.mark.asyncio
    async def test_same_url_twice(self, two_creators_and_a_failure):
        report = await analyze_creators([ALICE, ALICE], two_creators_and_a_failure, 10, 10)

        assert radar_values(report, "Consistency") == {"@alice": 100, "@alice (2)": 100}
        assert [point.name for point in report.comparison_chart] == ["@alice", "@alice (2)"]


# =============================================================
# TEST: Batch Size
# =============================================================

class TestBatchSize:
    """The five-creator cap applies after blank URLs are dropped."""

    @pytest.mark.asyncio
    async def test_more_than_five_rejected_before_scraping(self, fake_scraper):
        scraper = fake_scraper({})
        urls = [f"https://www.tiktok.com/@u{i}" for i in range(6)]

        with pytest.raises(InvalidAnalysisInputError, match="at most 5 creators"):
            await analyze_creators(urls, scraper, 10, 10)
        assert scraper.calls == []

    @pytest.mark.asyncio
    async def test_blank_entries_do_not_count(self, fake_scraper, creator_stream):
        urls = [f"https://www.tiktok.com/@u{i}" for i in range(5)]
        scraper = fake_scraper({
            url: ScrapeResult(success=True, data=creator_stream(f"u{i}", 10, [100]))
            for i, url in enumerate(urls)
        })
        report = await analyze_creators(urls + ["", "   "], scraper, 10, 10)

        assert len(report.analyses) == 5
        assert sorted(scraper.calls) == sorted(urls)

    @pytest.mark.asyncio
    async def test_infinite_cost_rejected(self, fake_scraper):
        with pytest.raises(InvalidAnalysisInputError, match="valid cost per video"):
            await analyze_creators([ALICE], fake_scraper({}), float("inf"), 10)
