"""Infinite level formulas for leveled achievements and the overall power level.

Every per-category requirement follows

    requirement(n) = floor(B * n^p * log2(n + 1) * (1 + alpha)^max(0, n - t))

which grows polynomially up to the soft cap ``t`` and exponentially past it.
Levels are recovered from a value by binary search over the (monotone)
requirement curve, never by inverting the formula algebraically.
"""

import math
from dataclasses import dataclass

from octorank.core.errors import UnknownCategoryError
from octorank.models.achievement import AchievementRarity, VisualTierName


# =============================================================================
# CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class FormulaParams:
    base: float
    power: float
    soft_cap: int
    alpha: float


CATEGORY_FORMULAS: dict[str, FormulaParams] = {
    "followers": FormulaParams(base=10, power=1.5, soft_cap=20, alpha=0.08),
    "stars": FormulaParams(base=10, power=1.6, soft_cap=22, alpha=0.08),
    "contributions": FormulaParams(base=10, power=1.7, soft_cap=25, alpha=0.08),
    "language_diversity": FormulaParams(base=2, power=1.3, soft_cap=30, alpha=0.05),
    "repositories": FormulaParams(base=1, power=1.5, soft_cap=20, alpha=0.08),
    "streak": FormulaParams(base=7, power=1.4, soft_cap=30, alpha=0.06),
    "account_age": FormulaParams(base=1, power=1.0, soft_cap=0, alpha=0.0),  # 1 year = 1 level
    "issues": FormulaParams(base=5, power=1.4, soft_cap=15, alpha=0.08),
    "pull_requests": FormulaParams(base=5, power=1.5, soft_cap=20, alpha=0.08),
    "reviews": FormulaParams(base=10, power=1.6, soft_cap=25, alpha=0.08),
    "external_contributions": FormulaParams(base=3, power=1.4, soft_cap=10, alpha=0.08),
}

LINEAR_CATEGORIES = frozenset({"account_age"})

CATEGORY_BASE_NAMES = {
    "followers": "Social Legend",
    "stars": "Star Collector",
    "contributions": "Code Master",
    "language_diversity": "Polyglot",
    "repositories": "Repository Architect",
    "streak": "Streak Champion",
    "issues": "Issue Solver",
    "pull_requests": "Merge Master",
    "reviews": "Code Reviewer",
    "external_contributions": "Open Source Hero",
}

# (min level, name suffix), checked top down
NAME_SUFFIXES = (
    (50, " - Legendary"),
    (30, " - Master"),
    (20, " - Advanced"),
    (10, " - Expert"),
    (5, " - Pro"),
    (3, " - Skilled"),
)

ACCOUNT_AGE_NAMES = (
    (15, "GitHub Legend"),
    (10, "GitHub Veteran - Master"),
    (7, "GitHub Veteran - Advanced"),
    (5, "GitHub Veteran - Expert"),
    (3, "GitHub Veteran"),
    (1, "GitHub Member"),
)

DESCRIPTION_TEMPLATES = {
    "followers": "Gained {current}+ followers. Next: {next} followers",
    "stars": "Received {current}+ stars. Next: {next} stars",
    "contributions": "Made {current}+ contributions. Next: {next} contributions",
    "language_diversity": "Used {current}+ programming languages. Next: {next} languages",
    "repositories": "Created {current}+ repositories. Next: {next} repositories",
    "streak": "Achieved {current}+ day streak. Next: {next} days",
    "issues": "Closed {current}+ issues. Next: {next} issues",
    "pull_requests": "Merged {current}+ pull requests. Next: {next} PRs",
    "reviews": "Completed {current}+ code reviews. Next: {next} reviews",
    "external_contributions": "Contributed to {current}+ external repos. Next: {next} repos",
}


@dataclass(frozen=True)
class VisualTier:
    tier: str
    rarity: str
    animation_intensity: float


# (min level, tier, points multiplier), checked top down
VISUAL_TIERS = (
    (50, VisualTier(VisualTierName.LEGENDARY.value, AchievementRarity.LEGENDARY.value, 1.0), 10.0),
    (30, VisualTier(VisualTierName.DIAMOND.value, AchievementRarity.LEGENDARY.value, 0.8), 7.0),
    (20, VisualTier(VisualTierName.PLATINUM.value, AchievementRarity.EPIC.value, 0.6), 5.0),
    (10, VisualTier(VisualTierName.GOLD.value, AchievementRarity.EPIC.value, 0.4), 3.0),
    (5, VisualTier(VisualTierName.SILVER.value, AchievementRarity.RARE.value, 0.2), 2.0),
    (0, VisualTier(VisualTierName.BRONZE.value, AchievementRarity.COMMON.value, 0.1), 1.0),
)


# =============================================================================
# CATEGORY LEVELS
# =============================================================================

def _raw_requirement(n: int, base: float, power: float, alpha: float, soft_cap: int) -> float:
    """Unfloored requirement; inf once the float range is exceeded."""
    try:
        poly = base * math.pow(n, power)
        late = math.pow(1 + alpha, max(0, n - soft_cap))
        return poly * math.log2(n + 1) * late
    except OverflowError:
        return math.inf


def requirement_for_level(n: int, base: float, power: float, alpha: float, soft_cap: int) -> int:
    """Cumulative metric value needed to hold level ``n``. Level 0 needs nothing."""
    if n <= 0:
        return 0
    return math.floor(_raw_requirement(n, base, power, alpha, soft_cap))


def get_formula(category: str) -> FormulaParams:
    params = CATEGORY_FORMULAS.get(category)
    if params is None:
        raise UnknownCategoryError(category)
    return params


def requirement_for_level_in_category(level: int, category: str) -> int:
    params = get_formula(category)
    if category in LINEAR_CATEGORIES:
        return max(0, level)
    return requirement_for_level(level, params.base, params.power, params.alpha, params.soft_cap)


def _reaches(level: int, value: float, params: FormulaParams) -> bool:
    raw = _raw_requirement(level, params.base, params.power, params.alpha, params.soft_cap)
    return not math.isinf(raw) and math.floor(raw) <= value


def current_level_for(value: float, category: str) -> int:
    """Largest level whose requirement does not exceed ``value``.

    Doubles the candidate level (1, 2, 4, 8...) until a level is out of reach, then bisects the
    bracket, so very high levels cost O(log n) formula evaluations.
    """
    params = get_formula(category)
    if category in LINEAR_CATEGORIES:
        return max(0, math.floor(value))
    if value <= 0 or not _reaches(1, value, params):
        return 0

    low, high = 1, 2
    while _reaches(high, value, params):
        low, high = high, high * 2

    # Invariant: low reaches, high does not
    while high - low > 1:
        mid = (low + high) // 2
        if _reaches(mid, value, params):
            low = mid
        else:
            high = mid
    return low


def next_level_requirement(value: float, category: str) -> int:
    return requirement_for_level_in_category(current_level_for(value, category) + 1, category)


@dataclass(frozen=True)
class LevelProgress:
    level: int
    progress: float
    remaining: float
    next_requirement: int
    progress_percentage: float


def progress_to_next_level(value: float, category: str) -> LevelProgress:
    """Progress from the current level's requirement towards the next one."""
    level = current_level_for(value, category)
    current_requirement = requirement_for_level_in_category(level, category)
    next_requirement = requirement_for_level_in_category(level + 1, category)
    progress = value - current_requirement
    span = next_requirement - current_requirement
    percentage = (progress / span) * 100 if span > 0 else 100.0
    return LevelProgress(
        level=level,
        progress=progress,
        remaining=max(0, next_requirement - value),
        next_requirement=next_requirement,
        progress_percentage=min(100.0, max(0.0, percentage)),
    )


def leveled_categories() -> list[str]:
    return list(CATEGORY_FORMULAS)


# =============================================================================
# TIERS, NAMES AND DESCRIPTIONS
# =============================================================================

def visual_tier(level: int) -> VisualTier:
    for min_level, tier, _ in VISUAL_TIERS:
        if level >= min_level:
            return tier
    return VISUAL_TIERS[-1][1]


def points_multiplier(level: int) -> float:
    for min_level, _, multiplier in VISUAL_TIERS:
        if level >= min_level:
            return multiplier
    return 1.0


def achievement_name(category: str, level: int) -> str:
    if category == "account_age":
        for min_level, name in ACCOUNT_AGE_NAMES:
            if level >= min_level:
                return name
        return "GitHub Newcomer"

    base_name = CATEGORY_BASE_NAMES.get(category, "Achievement")
    for min_level, suffix in NAME_SUFFIXES:
        if level >= min_level:
            return base_name + suffix
    return base_name


def achievement_description(category: str, level: int) -> str:
    if category == "account_age":
        if level >= 15:
            return f"A legendary GitHub veteran with {level} years of experience"
        if level >= 10:
            return f"A master-level GitHub veteran with {level} years of experience"
        if level >= 7:
            return f"An advanced GitHub veteran with {level} years of experience"
        if level >= 5:
            return f"An expert GitHub veteran with {level} years of experience"
        if level >= 3:
            return f"A seasoned GitHub veteran with {level} years of experience"
        if level >= 1:
            return f"A GitHub member with {level} year{'s' if level > 1 else ''} of experience"
        return "Just getting started on GitHub"

    template = DESCRIPTION_TEMPLATES.get(category)
    if template is None:
        return f"Reached level {level}"
    return template.format(
        current=requirement_for_level_in_category(level, category),
        next=requirement_for_level_in_category(level + 1, category),
    )


# =============================================================================
# POWER LEVEL
# =============================================================================

MAX_POWER_LEVEL = 1_000_000


def power_level_cost(n: int) -> int:
    """Points needed to advance into level ``n`` from level ``n - 1``."""
    return 100 + 20 * n + 3 * n * n


def cumulative_power_cost(n: int) -> int:
    """Total points needed to reach level ``n``: cost(1) + ... + cost(n)."""
    if n <= 0:
        return 0
    return 100 * n + 10 * n * (n + 1) + n * (n + 1) * (2 * n + 1) // 2


def power_level_from_points(points: int) -> int:
    if points < cumulative_power_cost(1):
        return 0
    low, high = 1, MAX_POWER_LEVEL
    while low < high:
        mid = (low + high + 1) // 2
        if cumulative_power_cost(mid) <= points:
            low = mid
        else:
            high = mid - 1
    return low


@dataclass(frozen=True)
class PowerProgress:
    level: int
    points_into_level: int
    next_level_cost: int
    points_to_next: int
    progress_percent: int


def power_progress(points: int) -> PowerProgress:
    level = power_level_from_points(points)
    next_cost = power_level_cost(level + 1)
    into_level = max(0, points - cumulative_power_cost(level))
    return PowerProgress(
        level=level,
        points_into_level=into_level,
        next_level_cost=next_cost,
        points_to_next=max(0, next_cost - into_level),
        progress_percent=max(0, min(100, math.floor(into_level / next_cost * 100))),
    )
