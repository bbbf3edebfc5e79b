"""Tests for infinite category levels, visual tiers and the power level.

Covers:
  - requirement_for_level shape (level 0, floor, soft cap growth)
  - current_level_for monotonicity and inverse consistency across categories
  - account_age linear levels
  - Visual tier / rarity / multiplier step function
  - Achievement names and descriptions
  - Power level cost curve and progress
"""
import math

import pytest

from octorank.core.errors import UnknownCategoryError


# =============================================================================
# CATEGORY REQUIREMENTS
# =============================================================================

class TestRequirementForLevel:
    """Tests for requirement_for_level: value needed to hold a level."""

    def test_level_zero_and_below_need_nothing(self):
        from octorank.services.level_formula import requirement_for_level
        assert requirement_for_level(0, 10, 1.6, 0.08, 22) == 0
        assert requirement_for_level(-3, 10, 1.6, 0.08, 22) == 0

    def test_level_one_is_base(self):
        """n^p and log2(n+1) are both 1 at level 1."""
        from octorank.services.level_formula import requirement_for_level
        assert requirement_for_level(1, 10, 1.6, 0.08, 22) == 10

    def test_matches_formula_below_soft_cap(self):
        from octorank.services.level_formula import requirement_for_level
        expected = math.floor(10 * 5 ** 1.6 * math.log2(6))
        assert requirement_for_level(5, 10, 1.6, 0.08, 22) == expected

    def test_exponential_factor_past_soft_cap(self):
        from octorank.services.level_formula import requirement_for_level
        expected = math.floor(10 * 30 ** 1.6 * math.log2(31) * 1.08 ** 8)
        assert requirement_for_level(30, 10, 1.6, 0.08, 22) == expected

    def test_repositories_small_levels(self):
        from octorank.services.level_formula import requirement_for_level_in_category
        assert requirement_for_level_in_category(1, "repositories") == 1
        assert requirement_for_level_in_category(2, "repositories") == 4
        assert requirement_for_level_in_category(3, "repositories") == 10

    def test_unknown_category_raises(self):
        from octorank.services.level_formula import requirement_for_level_in_category
        with pytest.raises(UnknownCategoryError):
            requirement_for_level_in_category(1, "karma")

    def test_unknown_category_is_value_error(self):
        from octorank.services.level_formula import current_level_for
        with pytest.raises(ValueError):
            current_level_for(10, "karma")


# =============================================================================
# CURRENT LEVEL
# =============================================================================

class TestCurrentLevel:
    """Tests for current_level_for: inverse of the requirement curve."""

    def test_zero_value_is_level_zero(self):
        from octorank.services.level_formula import current_level_for
        assert current_level_for(0, "stars") == 0

    def test_negative_value_clamps_to_zero(self):
        from octorank.services.level_formula import current_level_for
        assert current_level_for(-50, "followers") == 0

    def test_stars_exactly_at_level_five(self):
        """A value equal to requirement(5) reaches at least level 5."""
        from octorank.services.level_formula import current_level_for, requirement_for_level_in_category
        value = requirement_for_level_in_category(5, "stars")
        assert current_level_for(value, "stars") >= 5

    def test_one_below_requirement_stays_lower(self):
        from octorank.services.level_formula import current_level_for, requirement_for_level_in_category
        value = requirement_for_level_in_category(5, "stars")
        assert current_level_for(value - 1, "stars") == 4

    def test_repositories_boundaries(self):
        from octorank.services.level_formula import current_level_for
        assert current_level_for(3, "repositories") == 1
        assert current_level_for(4, "repositories") == 2
        assert current_level_for(9, "repositories") == 2
        assert current_level_for(10, "repositories") == 3

    @pytest.mark.parametrize("category", [
        "followers", "stars", "contributions", "language_diversity", "repositories",
        "streak", "issues", "pull_requests", "reviews", "external_contributions",
    ])
    def test_monotonic(self, category):
        """Level never decreases as the value grows."""
        from octorank.services.level_formula import current_level_for
        previous = 0
        for value in range(0, 5000, 7):
            level = current_level_for(value, category)
            assert level >= previous, f"{category}: level dropped at value {value}"
            previous = level

    @pytest.mark.parametrize("category", ["stars", "contributions", "streak", "language_diversity"])
    def test_inverse_consistency(self, category):
        """requirement(level) <= value < requirement(level + 1)."""
        from octorank.services.level_formula import current_level_for, requirement_for_level_in_category
        for value in (0, 1, 9, 10, 11, 250, 999, 12_345, 1_000_000, 10**9):
            level = current_level_for(value, category)
            assert requirement_for_level_in_category(level, category) <= value
            assert value < requirement_for_level_in_category(level + 1, category)

    def test_very_large_values_resolve(self):
        """Huge values hit the exponential regime without overflowing."""
        from octorank.services.level_formula import current_level_for
        level = current_level_for(10**300, "repositories")
        assert level > 100

    def test_next_level_requirement(self):
        from octorank.services.level_formula import next_level_requirement, requirement_for_level_in_category
        assert next_level_requirement(0, "stars") == requirement_for_level_in_category(1, "stars")
        assert next_level_requirement(10, "stars") == requirement_for_level_in_category(2, "stars")


class TestAccountAge:
    """account_age is linear: one level per completed year."""

    def test_floor_of_years(self):
        from octorank.services.level_formula import current_level_for
        assert current_level_for(0, "account_age") == 0
        assert current_level_for(4.99, "account_age") == 4
        assert current_level_for(12, "account_age") == 12

    def test_requirement_is_the_year(self):
        from octorank.services.level_formula import requirement_for_level_in_category
        assert requirement_for_level_in_category(7, "account_age") == 7


class TestProgressToNextLevel:
    def test_progress_at_level_start(self):
        from octorank.services.level_formula import progress_to_next_level
        progress = progress_to_next_level(10, "stars")
        assert progress.level == 1
        assert progress.progress == 0
        assert progress.progress_percentage == 0

    def test_progress_percentage_bounded(self):
        from octorank.services.level_formula import progress_to_next_level
        for value in (0, 5, 17, 400, 9000):
            progress = progress_to_next_level(value, "followers")
            assert 0 <= progress.progress_percentage <= 100
            assert progress.remaining >= 0


# =============================================================================
# TIERS AND NAMES
# =============================================================================

class TestVisualTier:
    @pytest.mark.parametrize("level,tier,rarity,multiplier", [
        (0, "bronze", "common", 1.0),
        (4, "bronze", "common", 1.0),
        (5, "silver", "rare", 2.0),
        (10, "gold", "epic", 3.0),
        (20, "platinum", "epic", 5.0),
        (30, "diamond", "legendary", 7.0),
        (49, "diamond", "legendary", 7.0),
        (50, "legendary", "legendary", 10.0),
        (500, "legendary", "legendary", 10.0),
    ])
    def test_step_function(self, level, tier, rarity, multiplier):
        from octorank.services.level_formula import points_multiplier, visual_tier
        assert visual_tier(level).tier == tier
        assert visual_tier(level).rarity == rarity
        assert points_multiplier(level) == multiplier

    def test_animation_intensity_grows(self):
        from octorank.services.level_formula import visual_tier
        intensities = [visual_tier(level).animation_intensity for level in (0, 5, 10, 20, 30, 50)]
        assert intensities == sorted(intensities)
        assert intensities[0] == 0.1
        assert intensities[-1] == 1.0

    def test_tiers_use_known_names_and_rarities(self):
        from octorank.models import AchievementRarity, VisualTierName
        from octorank.services.level_formula import visual_tier
        for level in range(0, 60):
            tier = visual_tier(level)
            assert VisualTierName(tier.tier)
            assert AchievementRarity(tier.rarity)


class TestAchievementNames:
    def test_suffixes(self):
        from octorank.services.level_formula import achievement_name
        assert achievement_name("stars", 1) == "Star Collector"
        assert achievement_name("stars", 3) == "Star Collector - Skilled"
        assert achievement_name("stars", 5) == "Star Collector - Pro"
        assert achievement_name("stars", 10) == "Star Collector - Expert"
        assert achievement_name("stars", 50) == "Star Collector - Legendary"

    def test_account_age_names(self):
        from octorank.services.level_formula import achievement_name
        assert achievement_name("account_age", 0) == "GitHub Newcomer"
        assert achievement_name("account_age", 1) == "GitHub Member"
        assert achievement_name("account_age", 3) == "GitHub Veteran"
        assert achievement_name("account_age", 10) == "GitHub Veteran - Master"
        assert achievement_name("account_age", 16) == "GitHub Legend"

    def test_description_mentions_requirements(self):
        from octorank.services.level_formula import achievement_description, requirement_for_level_in_category
        description = achievement_description("stars", 2)
        assert str(requirement_for_level_in_category(2, "stars")) in description
        assert str(requirement_for_level_in_category(3, "stars")) in description

    def test_account_age_description_pluralizes(self):
        from octorank.services.level_formula import achievement_description
        assert "1 year of" in achievement_description("account_age", 1)
        assert "2 years of" in achievement_description("account_age", 2)


# =============================================================================
# POWER LEVEL
# =============================================================================

class TestPowerLevel:
    """Tests for the quadratic power level curve."""

    def test_cost_curve(self):
        from octorank.services.level_formula import power_level_cost
        assert power_level_cost(1) == 123
        assert power_level_cost(2) == 152
        assert power_level_cost(10) == 600

    def test_cumulative_matches_sum(self):
        from octorank.services.level_formula import cumulative_power_cost, power_level_cost
        for n in range(0, 60):
            assert cumulative_power_cost(n) == sum(power_level_cost(i) for i in range(1, n + 1))

    def test_level_one_boundary(self):
        """122 points is still level 0; 123 reaches level 1."""
        from octorank.services.level_formula import power_level_from_points
        assert power_level_from_points(0) == 0
        assert power_level_from_points(122) == 0
        assert power_level_from_points(123) == 1

    def test_level_two_boundary(self):
        from octorank.services.level_formula import power_level_from_points
        assert power_level_from_points(274) == 1
        assert power_level_from_points(275) == 2

    def test_large_points(self):
        from octorank.services.level_formula import cumulative_power_cost, power_level_from_points
        points = cumulative_power_cost(500)
        assert power_level_from_points(points) == 500
        assert power_level_from_points(points - 1) == 499

    def test_progress(self):
        from octorank.services.level_formula import power_progress
        progress = power_progress(200)
        assert progress.level == 1
        assert progress.points_into_level == 77
        assert progress.next_level_cost == 152
        assert progress.points_to_next == 75
        assert progress.progress_percent == 50
