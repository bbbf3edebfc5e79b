from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/octorank"

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 30.0

    # Background refresh
    background_update_interval_ms: int = 300_000  # 5 minutes
    background_update_batch_size: int = 5
    background_update_batch_delay_ms: int = 2_000
    background_initial_delay_ms: int = 10_000

    # App settings
    app_name: str = "OctoRank"
    debug: bool = False
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_background_timing(self) -> "Settings":
        """Reject intervals and batch sizes that would stall or spin the refresh loop."""
        if self.background_update_interval_ms <= 0:
            raise ValueError("BACKGROUND_UPDATE_INTERVAL_MS must be positive")
        if self.background_update_batch_size <= 0:
            raise ValueError("BACKGROUND_UPDATE_BATCH_SIZE must be positive")
        if self.background_update_batch_delay_ms < 0 or self.background_initial_delay_ms < 0:
            raise ValueError("Background delays cannot be negative")
        if self.github_timeout_seconds <= 0:
            raise ValueError("GITHUB_TIMEOUT_SECONDS must be positive")
        return self


settings = Settings()
