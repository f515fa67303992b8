import pytest

from trendboard.scoring import (
    MAX_SCORE,
    PlatformMetrics,
    clamp,
    combine_scores,
    momentum,
    platform_score,
)


# ---------------------------------------------------------------------------
# platform_score()
# ---------------------------------------------------------------------------

class TestPlatformScore:
    def test_youtube_formula(self):
        metrics = PlatformMetrics(velocities={"views": 10, "likes": 20, "comments": 30})
        assert platform_score("youtube", metrics) == pytest.approx(0.4 * 10 + 0.3 * 20 + 0.3 * 30)

    def test_reddit_formula(self):
        metrics = PlatformMetrics(velocities={"upvotes": 8, "comments": 2})
        assert platform_score("reddit", metrics) == pytest.approx(5.0)

    def test_x_formula(self):
        metrics = PlatformMetrics(velocities={"reposts": 10, "likes": 10, "replies": 10})
        assert platform_score("x", metrics) == pytest.approx(10.0)

    def test_raw_sum_of_250_clamps_to_100(self):
        metrics = PlatformMetrics(velocities={"upvotes": 500})
        assert platform_score("reddit", metrics) == MAX_SCORE

    def test_authority_scales_youtube(self):
        metrics = PlatformMetrics(velocities={"views": 10}, authority_weight=2.5)
        assert platform_score("youtube", metrics) == pytest.approx(10.0)

    def test_authority_ignored_for_reddit(self):
        metrics = PlatformMetrics(velocities={"upvotes": 10}, authority_weight=3.0)
        assert platform_score("reddit", metrics) == pytest.approx(5.0)

    def test_missing_counters_count_as_zero(self):
        assert platform_score("youtube", PlatformMetrics()) == 0.0

    def test_unknown_platform_scores_zero(self):
        assert platform_score("tiktok", PlatformMetrics(velocities={"views": 99})) == 0.0

    def test_custom_formula(self):
        metrics = PlatformMetrics(velocities={"views": 10})
        assert platform_score("youtube", metrics, formulas={"youtube": {"views": 1.0}}) == 10.0


class TestClamp:
    @pytest.mark.parametrize("value,expected", [(-5, 0.0), (0, 0.0), (42.5, 42.5), (100, 100.0), (250, 100.0)])
    def test_bounds(self, value, expected):
        assert clamp(value) == expected


# ---------------------------------------------------------------------------
# combine_scores()
# ---------------------------------------------------------------------------

class TestCombineScores:
    def test_weighted_mean(self):
        result = combine_scores({"youtube": 80, "reddit": 20}, {"youtube": 1, "reddit": 1, "x": 0})
        assert result.score == pytest.approx(50.0)

    def test_uneven_weights(self):
        result = combine_scores({"youtube": 80, "reddit": 20}, {"youtube": 3, "reddit": 1})
        assert result.score == pytest.approx(65.0)

    def test_breakdown_is_share_of_raw_total(self):
        result = combine_scores({"youtube": 75, "reddit": 25, "x": 0}, {"youtube": 1, "reddit": 1, "x": 0})
        assert result.sources == {"youtube": 0.75, "reddit": 0.25, "x": 0.0}
        assert sum(result.sources.values()) == pytest.approx(1.0)

    def test_zero_weight_platform_still_in_breakdown(self):
        result = combine_scores({"youtube": 50, "x": 50}, {"youtube": 1, "x": 0})
        assert result.score == pytest.approx(50.0)
        assert result.sources["x"] == pytest.approx(0.5)

    def test_zero_weights_score_zero(self):
        result = combine_scores({"youtube": 50}, {"youtube": 0, "reddit": 0})
        assert result.score == 0.0

    def test_zero_total_gives_zero_shares(self):
        result = combine_scores({"youtube": 0, "reddit": 0}, {"youtube": 1, "reddit": 1})
        assert result.score == 0.0
        assert result.sources == {"youtube": 0.0, "reddit": 0.0}


# ---------------------------------------------------------------------------
# momentum()
# ---------------------------------------------------------------------------

class TestMomentum:
    def test_growth(self):
        assert momentum(150, 100) == pytest.approx(50.0)

    def test_decline(self):
        assert momentum(25, 100) == pytest.approx(-75.0)

    def test_flat(self):
        assert momentum(10, 10) == 0.0

    def test_new_activity_from_zero_is_100(self):
        assert momentum(42, 0) == 100.0

    def test_nothing_from_nothing_is_0(self):
        assert momentum(0, 0) == 0.0

    def test_vanished_activity_is_minus_100(self):
        assert momentum(0, 7) == -100.0
