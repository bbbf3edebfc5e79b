"""Static achievement catalog.

Each definition carries exactly one criteria variant:

- LeveledCriteria: infinite levels over one metric, see level_formula
- FlagCriteria: unlocked once a boolean badge flag is set on the snapshot
- ThresholdCriteria: unlocked once a numeric metric reaches a minimum
"""

from dataclasses import dataclass, field
from typing import Any, Union

from octorank.models.achievement import AchievementRarity, VisualTierName
from octorank.services import level_formula


@dataclass(frozen=True)
class LeveledCriteria:
    category: str
    metric: str
    kind: str = field(default="leveled", init=False)


@dataclass(frozen=True)
class FlagCriteria:
    flag: str
    kind: str = field(default="flag", init=False)


@dataclass(frozen=True)
class ThresholdCriteria:
    metric: str
    minimum: int
    kind: str = field(default="threshold", init=False)


Criteria = Union[LeveledCriteria, FlagCriteria, ThresholdCriteria]


def criteria_to_dict(criteria: Criteria) -> dict[str, Any]:
    match criteria:
        case LeveledCriteria(category=category, metric=metric):
            return {"kind": "leveled", "category": category, "metric": metric}
        case FlagCriteria(flag=flag):
            return {"kind": "flag", "flag": flag}
        case ThresholdCriteria(metric=metric, minimum=minimum):
            return {"kind": "threshold", "metric": metric, "minimum": minimum}
    raise TypeError(f"Unsupported criteria: {criteria!r}")


def criteria_from_dict(data: dict[str, Any]) -> Criteria:
    kind = data.get("kind")
    if kind == "leveled":
        return LeveledCriteria(category=data["category"], metric=data["metric"])
    if kind == "flag":
        return FlagCriteria(flag=data["flag"])
    if kind == "threshold":
        return ThresholdCriteria(metric=data["metric"], minimum=int(data["minimum"]))
    raise ValueError(f"Unknown criteria kind: {kind!r}")


@dataclass(frozen=True)
class AchievementDefinition:
    slug: str
    name: str
    description: str
    category: str
    icon: str
    rarity: str
    tier: str
    criteria: Criteria
    points: int
    is_github_native: bool = False
    source: str = "devquest"

    @property
    def is_leveled(self) -> bool:
        return isinstance(self.criteria, LeveledCriteria)


# Snapshot field backing each leveled category
PRIMARY_METRICS = {
    "followers": "followers",
    "stars": "total_stars",
    "contributions": "overall_contributions",
    "language_diversity": "language_count",
    "repositories": "total_repositories",
    "streak": "longest_streak",
    "account_age": "account_age",  # derived from the user, not the snapshot
    "issues": "closed_issues",
    "pull_requests": "merged_pull_requests",
    "reviews": "total_reviews",
    "external_contributions": "external_contributors",
}

CATEGORY_ICONS = {
    "followers": "users",
    "stars": "star",
    "contributions": "git-commit",
    "language_diversity": "code",
    "repositories": "git-branch",
    "streak": "flame",
    "account_age": "award",
    "issues": "check-circle",
    "pull_requests": "git-merge",
    "reviews": "eye",
    "external_contributions": "users",
}

LEVELED_BASE_POINTS = 10


def leveled_definition(category: str, level: int = 1) -> AchievementDefinition:
    """Definition of a leveled achievement as presented at ``level``."""
    tier = level_formula.visual_tier(level)
    return AchievementDefinition(
        slug=f"leveled-{category.replace('_', '-')}",
        name=level_formula.achievement_name(category, level),
        description=level_formula.achievement_description(category, level),
        category=category,
        icon=CATEGORY_ICONS.get(category, "trophy"),
        rarity=tier.rarity,
        tier=tier.tier,
        criteria=LeveledCriteria(category=category, metric=PRIMARY_METRICS[category]),
        points=int(LEVELED_BASE_POINTS * level_formula.points_multiplier(level)),
        source="custom",
    )


def _flag(slug, name, description, category, icon, rarity, flag, points, source, native=False):
    return AchievementDefinition(
        slug=slug,
        name=name,
        description=description,
        category=category,
        icon=icon,
        rarity=AchievementRarity(rarity).value,
        tier=VisualTierName.BRONZE.value,
        criteria=FlagCriteria(flag=flag),
        points=points,
        is_github_native=native,
        source=source,
    )


def _threshold(slug, name, description, category, icon, rarity, metric, minimum, points):
    return AchievementDefinition(
        slug=slug,
        name=name,
        description=description,
        category=category,
        icon=icon,
        rarity=AchievementRarity(rarity).value,
        tier=VisualTierName.BRONZE.value,
        criteria=ThresholdCriteria(metric=metric, minimum=minimum),
        points=points,
        source="badge",
    )


NON_LEVELED_DEFINITIONS: tuple[AchievementDefinition, ...] = (
    # GitHub native
    _flag("quickdraw", "Quickdraw",
          "Opened an issue or pull request within 5 minutes of a repository being created",
          "github_native", "zap", "rare", "quickdraw", 100, "github", native=True),
    _flag("pair-extraordinaire", "Pair Extraordinaire",
          "Co-authored commits merged into the default branch",
          "github_native", "users", "rare", "pair_extraordinaire", 100, "github", native=True),
    _flag("pull-shark", "Pull Shark", "2 pull requests merged into the default branch",
          "github_native", "git-merge", "common", "pull_shark", 50, "github", native=True),
    _flag("galaxy-brain", "Galaxy Brain", "Answered a discussion",
          "github_native", "brain", "common", "galaxy_brain", 50, "github", native=True),
    _flag("yolo", "YOLO", "Merged a pull request without review",
          "github_native", "skull", "epic", "yolo", 200, "github", native=True),
    _flag("public-sponsor", "Public Sponsor", "Sponsored an open source contributor",
          "github_native", "heart", "epic", "public_sponsor", 200, "github", native=True),
    # Community
    _flag("open-source-hero", "Open Source Hero",
          "Made significant contributions to open source projects",
          "community", "shield", "epic", "open_source_hero", 200, "community"),
    _flag("community-builder", "Community Builder", "Active in community discussions and help",
          "community", "users", "rare", "community_builder", 100, "community"),
    _flag("mentor", "Mentor", "Helped other developers through code reviews and guidance",
          "community", "graduation-cap", "rare", "mentor", 100, "community"),
    # Time based
    _flag("weekend-warrior", "Weekend Warrior", "Active contributor on weekends",
          "time_based", "calendar", "common", "weekend_warrior", 25, "custom"),
    _flag("early-bird", "Early Bird", "Made commits early in the morning",
          "time_based", "sunrise", "common", "early_bird", 25, "custom"),
    # Trending
    _flag("trending-developer", "Trending Developer", "Featured in GitHub trending developers list",
          "trending", "trending-up", "epic", "trending_developer", 300, "trending"),
    # Threshold badges
    _threshold("first-commit", "First Steps", "Made your first commit",
               "contribution", "git-branch", "common", "overall_contributions", 1, 10),
    _threshold("century-club", "Century Club", "Made 100+ contributions",
               "contribution", "zap", "common", "overall_contributions", 100, 25),
    _threshold("thousand-commits", "Commit Master", "Made 1000+ contributions",
               "contribution", "trophy", "rare", "overall_contributions", 1000, 50),
    _threshold("popular-dev", "Popular Developer", "Gained 100+ followers",
               "social", "users", "common", "followers", 100, 25),
    _threshold("star-collector", "Star Collector", "Earned 1000+ total stars",
               "repository", "star", "epic", "total_stars", 1000, 100),
    _threshold("consistent-contributor", "Consistent Contributor", "Maintained a 30-day streak",
               "streak", "target", "rare", "longest_streak", 30, 50),
)


def leveled_definitions() -> list[AchievementDefinition]:
    return [leveled_definition(category) for category in level_formula.leveled_categories()]


def all_definitions() -> list[AchievementDefinition]:
    return leveled_definitions() + list(NON_LEVELED_DEFINITIONS)
