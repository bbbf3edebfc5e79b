"""GitHub stats source.

Tries the GraphQL API first for the full picture (contribution calendar,
pull requests, issues, reviews) and falls back to a degraded REST-only
snapshot when GraphQL is unavailable, rate limited or times out.
"""

import logging
import math
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

import httpx
from dateutil.parser import isoparse

from octorank.core.config import settings
from octorank.core.errors import (
    GitHubConfigError,
    GitHubError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubTimeoutError,
)
from octorank.schemas import GitHubProfile, UserStatsSnapshot
from octorank.services.period_clock import Clock, as_utc, session_bounds, utc_now

logger = logging.getLogger(__name__)

USER_AGENT = "OctoRank"

RARE_LANGUAGES = frozenset({
    "COBOL", "Fortran", "Assembly", "Pascal", "Ada", "Lisp", "Prolog",
    "Haskell", "Erlang", "Elixir", "Clojure", "Scala", "F#", "Rust", "Go",
    "Kotlin", "Swift", "Dart", "Julia", "R", "MATLAB",
})

# Share of commits counted as "meaningful" when no finer signal exists
MEANINGFUL_COMMIT_RATIO = 0.7

STATS_QUERY = """
query($username: String!) {
  user(login: $username) {
    createdAt
    followers { totalCount }
    following { totalCount }
    repositories(first: 100, ownerAffiliations: OWNER, orderBy: {field: STARGAZERS, direction: DESC}) {
      totalCount
      nodes {
        stargazerCount
        forkCount
        isFork
        primaryLanguage { name }
        languages(first: 10) { nodes { name } }
      }
    }
    pullRequests(first: 100, states: [OPEN, MERGED, CLOSED]) {
      totalCount
      nodes { merged }
    }
    issues(first: 100, states: [OPEN, CLOSED]) {
      totalCount
      nodes { closed }
    }
    contributionsCollection {
      totalCommitContributions
      pullRequestReviewContributions(first: 1) { totalCount }
      contributionCalendar {
        totalContributions
        weeks { contributionDays { contributionCount date } }
      }
    }
  }
}
"""

YEAR_CONTRIBUTIONS_QUERY = """
query($username: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $username) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar { totalContributions }
    }
  }
}
"""


class StatsSource(Protocol):
    async def fetch_user_stats(self, username: str) -> UserStatsSnapshot: ...

    async def fetch_user_data(self, username: str) -> GitHubProfile: ...


# =============================================================================
# CALENDAR HELPERS
# =============================================================================

def calendar_days(calendar: dict[str, Any]) -> list[tuple[date, int]]:
    days = [
        (date.fromisoformat(day["date"]), int(day.get("contributionCount") or 0))
        for week in calendar.get("weeks") or []
        for day in week.get("contributionDays") or []
    ]
    return sorted(days)


def current_streak(days: list[tuple[date, int]], today: date) -> int:
    """Consecutive active days ending today, or yesterday if today is still empty."""
    counts = dict(days)
    cursor = today if counts.get(today, 0) > 0 else today - timedelta(days=1)
    streak = 0
    while counts.get(cursor, 0) > 0:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_streak(days: list[tuple[date, int]]) -> int:
    longest = run = 0
    previous = None
    for day, count in days:
        if count > 0:
            run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
            previous = day
            longest = max(longest, run)
        else:
            run = 0
            previous = None
    return longest


def sum_between(days: list[tuple[date, int]], start: date, end: date) -> int:
    return sum(count for day, count in days if start <= day <= end)


def contribution_windows(days: list[tuple[date, int]], now: datetime) -> dict[str, int]:
    """Contribution totals for each session period containing ``now``."""
    windows = {}
    for session_type in ("daily", "weekly", "monthly", "yearly"):
        bounds = session_bounds(session_type, now)
        windows[f"{session_type}_contributions"] = sum_between(days, bounds.start.date(), bounds.end.date())
    today = as_utc(now).date()
    windows["last_365_contributions"] = sum_between(days, today - timedelta(days=364), today)
    return windows


def enhanced_points(stats: dict[str, int]) -> int:
    return (
        stats["last_365_contributions"]
        + stats["total_stars"] * 2
        + stats["current_streak"] * 5
        + stats["total_repositories"] * 3
        + stats["merged_pull_requests"] * 10
        + stats["closed_issues"] * 5
        + stats["total_reviews"] * 3
        + stats["meaningful_commits"] * 2
    )


# =============================================================================
# CLIENT
# =============================================================================

class GitHubStatsSource:
    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        clock: Clock = utc_now,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = settings.github_token if token is None else token
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.timeout = timeout or settings.github_timeout_seconds
        self.clock = clock
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _require_token(self) -> None:
        if not self.token:
            raise GitHubConfigError("GitHub token is required. Set the GITHUB_TOKEN environment variable.")

    @staticmethod
    def _raise_for_status(response: httpx.Response, api: str) -> None:
        if response.status_code < 400:
            return
        if response.status_code in (403, 429):
            reset = response.headers.get("x-ratelimit-reset")
            if reset or response.headers.get("x-ratelimit-remaining") == "0":
                reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
                raise GitHubRateLimitError(reset_at)
        if response.status_code == 404:
            raise GitHubNotFoundError(f"GitHub {api} resource not found", status_code=404)
        if 502 <= response.status_code <= 504:
            raise GitHubError(f"GitHub {api} API temporarily unavailable: {response.status_code}", response.status_code)
        raise GitHubError(f"GitHub {api} API error: {response.status_code}", response.status_code)

    async def _graphql(self, client: httpx.AsyncClient, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await client.post("/graphql", json={"query": query, "variables": variables})
        except httpx.TimeoutException as e:
            raise GitHubTimeoutError("GitHub GraphQL request timed out") from e
        except httpx.TransportError as e:
            raise GitHubError(f"GitHub GraphQL transport error: {e}") from e

        self._raise_for_status(response, "GraphQL")
        payload = response.json()
        if payload.get("errors"):
            raise GitHubError(f"GraphQL errors: {payload['errors']}")
        return payload.get("data") or {}

    async def _rest(self, client: httpx.AsyncClient, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise GitHubTimeoutError("GitHub REST request timed out") from e
        except httpx.TransportError as e:
            raise GitHubError(f"GitHub REST transport error: {e}") from e

        self._raise_for_status(response, "REST")
        return response.json()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def fetch_user_data(self, username: str) -> GitHubProfile:
        async with self._client() as client:
            data = await self._rest(client, f"/users/{username}")
        return GitHubProfile(
            github_id=data["id"],
            login=data["login"],
            name=data.get("name"),
            avatar_url=data.get("avatar_url"),
            created_at=isoparse(data["created_at"]) if data.get("created_at") else None,
            followers=data.get("followers") or 0,
            following=data.get("following") or 0,
            public_repos=data.get("public_repos") or 0,
        )

    async def fetch_user_stats(self, username: str) -> UserStatsSnapshot:
        self._require_token()
        try:
            return await self._fetch_with_graphql(username)
        except GitHubNotFoundError:
            raise
        except GitHubError as e:
            logger.warning("GraphQL stats failed for %s, using REST fallback: %s", username, e)
            return await self._fetch_with_rest(username)

    # =========================================================================
    # GRAPHQL (full)
    # =========================================================================

    async def _fetch_with_graphql(self, username: str) -> UserStatsSnapshot:
        now = self.clock()
        async with self._client() as client:
            data = await self._graphql(client, STATS_QUERY, {"username": username})
            user = data.get("user")
            if not user:
                raise GitHubNotFoundError(f"GitHub user {username} not found", status_code=404)

            stats = self._aggregate(user, now)
            created_at = isoparse(user["createdAt"]) if user.get("createdAt") else None
            if created_at is not None:
                stats["overall_contributions"] = await self._overall_contributions(
                    client, username, created_at, now, fallback=stats["yearly_contributions"]
                )
            else:
                stats["overall_contributions"] = stats["yearly_contributions"]

        stats["points"] = enhanced_points(stats)
        return UserStatsSnapshot(**stats, last_fetched_at=now)

    def _aggregate(self, user: dict[str, Any], now: datetime) -> dict[str, Any]:
        repositories = user["repositories"]
        nodes = repositories.get("nodes") or []
        languages = Counter(
            repo["primaryLanguage"]["name"] for repo in nodes if repo.get("primaryLanguage")
        )
        total_repositories = repositories.get("totalCount") or 0
        top_language, top_count = languages.most_common(1)[0] if languages else (None, 0)
        rare_language_repos = sum(
            1
            for repo in nodes
            for lang in (repo.get("languages") or {}).get("nodes") or []
            if lang.get("name") in RARE_LANGUAGES
        )
        repos_with_forks = sum(1 for repo in nodes if repo.get("forkCount", 0) > 0)

        pull_requests = user["pullRequests"]
        merged = sum(1 for pr in pull_requests.get("nodes") or [] if pr.get("merged"))
        issues = user["issues"]
        closed = sum(1 for issue in issues.get("nodes") or [] if issue.get("closed"))

        collection = user["contributionsCollection"]
        total_commits = collection.get("totalCommitContributions") or 0
        days = calendar_days(collection.get("contributionCalendar") or {})

        stats = {
            **contribution_windows(days, now),
            "total_stars": sum(repo.get("stargazerCount", 0) for repo in nodes),
            "total_forks": sum(repo.get("forkCount", 0) for repo in nodes),
            "total_repositories": total_repositories,
            "followers": user["followers"]["totalCount"],
            "following": user["following"]["totalCount"],
            "current_streak": current_streak(days, as_utc(now).date()),
            "longest_streak": longest_streak(days),
            "top_language": top_language,
            "language_stats": dict(languages),
            "total_commits": total_commits,
            "meaningful_commits": math.floor(total_commits * MEANINGFUL_COMMIT_RATIO),
            "total_pull_requests": pull_requests.get("totalCount") or 0,
            "merged_pull_requests": merged,
            "total_issues": issues.get("totalCount") or 0,
            "closed_issues": closed,
            "total_reviews": collection["pullRequestReviewContributions"]["totalCount"],
            "external_contributors": repos_with_forks,
            "repos_with_stars": sum(1 for repo in nodes if repo.get("stargazerCount", 0) > 0),
            "repos_with_forks": repos_with_forks,
            "language_count": len(languages),
            "top_language_percentage": round(top_count / total_repositories * 100) if total_repositories else 0,
            "rare_language_repos": rare_language_repos,
            "pull_shark": merged >= 2,
        }
        return stats

    async def _overall_contributions(
        self,
        client: httpx.AsyncClient,
        username: str,
        created_at: datetime,
        now: datetime,
        fallback: int,
    ) -> int:
        """Sum contribution calendars year by year since the account was created."""
        total = 0
        try:
            for year in range(as_utc(created_at).year, as_utc(now).year + 1):
                bounds = session_bounds("yearly", datetime(year, 1, 1, tzinfo=timezone.utc))
                data = await self._graphql(
                    client,
                    YEAR_CONTRIBUTIONS_QUERY,
                    {"username": username, "from": bounds.start.isoformat(), "to": bounds.end.isoformat()},
                )
                calendar = data["user"]["contributionsCollection"]["contributionCalendar"]
                total += calendar.get("totalContributions") or 0
        except (GitHubError, KeyError, TypeError) as e:
            logger.warning("Overall contributions unavailable for %s, using current year: %s", username, e)
            return fallback
        return total

    # =========================================================================
    # REST (degraded)
    # =========================================================================

    async def _fetch_with_rest(self, username: str) -> UserStatsSnapshot:
        now = self.clock()
        async with self._client() as client:
            user = await self._rest(client, f"/users/{username}")
            repos = await self._rest(
                client,
                f"/users/{username}/repos",
                params={"per_page": 100, "sort": "updated", "type": "owner"},
            )

        languages = Counter(repo["language"] for repo in repos if repo.get("language"))
        top_language, top_count = languages.most_common(1)[0] if languages else (None, 0)
        total_stars = sum(repo.get("stargazers_count") or 0 for repo in repos)
        repos_with_forks = sum(1 for repo in repos if (repo.get("forks_count") or 0) > 0)

        return UserStatsSnapshot(
            points=total_stars * 2 + len(repos) * 3,
            total_stars=total_stars,
            total_forks=sum(repo.get("forks_count") or 0 for repo in repos),
            total_repositories=len(repos),
            followers=user.get("followers") or 0,
            following=user.get("following") or 0,
            top_language=top_language,
            language_stats=dict(languages),
            repos_with_stars=sum(1 for repo in repos if (repo.get("stargazers_count") or 0) > 0),
            repos_with_forks=repos_with_forks,
            language_count=len(languages),
            top_language_percentage=round(top_count / len(repos) * 100) if repos else 0,
            last_fetched_at=now,
            degraded=True,
        )
