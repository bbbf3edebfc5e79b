"""OctoRank - GitHub activity levels, achievements and session leaderboards."""

__version__ = "0.1.0"
