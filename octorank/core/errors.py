"""Domain exceptions."""


class OctoRankError(Exception):
    """Base class for all OctoRank errors."""


class UnknownCategoryError(OctoRankError, ValueError):
    """Raised for an achievement category with no level formula."""

    def __init__(self, category: str):
        super().__init__(f"Unknown achievement category: {category}")
        self.category = category


class UnknownSessionTypeError(OctoRankError, ValueError):
    """Raised for a session type outside daily/weekly/monthly/yearly/overall."""

    def __init__(self, session_type: str):
        super().__init__(f"Unknown session type: {session_type}")
        self.session_type = session_type


class NoActiveSessionError(OctoRankError):
    """Raised when an operation requires an active session and none exists."""


class GitHubError(OctoRankError):
    """Transient GitHub API failure. Callers may fall back or skip the user."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubRateLimitError(GitHubError):
    def __init__(self, reset_at=None):
        message = "GitHub rate limit exceeded"
        if reset_at is not None:
            message += f". Resets at {reset_at.isoformat()}"
        super().__init__(message, status_code=403)
        self.reset_at = reset_at


class GitHubTimeoutError(GitHubError):
    pass


class GitHubNotFoundError(GitHubError):
    pass


class GitHubConfigError(OctoRankError):
    """No usable GitHub token. Fatal for the fetch, never retried."""
