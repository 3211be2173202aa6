from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ENVIRONMENTS = ("development", "testing", "production")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Deployment environment - development | testing | production
    environment: str = "development"

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Rate limiting settings (token bucket capacities)
    rate_limit_user_per_minute: int = 10
    rate_limit_user_per_day: int = 40
    rate_limit_global_per_minute: int = 500
    rate_limit_global_per_day: int = 50000

    # Global bucket storage (one JSON file per granularity)
    rate_limit_data_dir: Path = Path("data")
    rate_limit_lock_timeout: float = 2.0  # Give up on the file lock after 2s
    rate_limit_lock_retry_interval: float = 0.05  # 50ms between lock attempts

    # WARNING: disables rate limiting entirely. Never allowed in production.
    rate_limit_disabled: bool = False

    # If True, checking global quota also spends a global token
    rate_limit_global_check_spends_token: bool = False

    # Session cookie that holds the per-client buckets
    session_secret_key: str = "change-me"
    session_cookie_name: str = "scenegate_session"
    session_max_age: int = 14 * 24 * 60 * 60  # 14 days

    # OpenAI settings (scene generation provider)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "chatgpt-4o-latest"
    openai_temperature: float = 0.7
    openai_timeout: float = 30.0  # Total request timeout
    openai_connect_timeout: float = 10.0  # Time to establish connection

    # OpenAI pricing (USD per 1K tokens) used for the cost estimate
    openai_input_price_per_1k: float = 0.0025
    openai_output_price_per_1k: float = 0.01

    # Use the offline mock provider instead of OpenAI
    mock_provider: bool = False

    # Scene request settings
    scene_description_max_chars: int = 500

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the known names."""
        v = v.strip().lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {', '.join(ENVIRONMENTS)}")
        return v

    @field_validator(
        "rate_limit_user_per_minute",
        "rate_limit_user_per_day",
        "rate_limit_global_per_minute",
        "rate_limit_global_per_day",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator(
        "rate_limit_lock_timeout",
        "rate_limit_lock_retry_interval",
        "openai_timeout",
        "openai_connect_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("scene_description_max_chars")
    @classmethod
    def validate_description_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scene_description_max_chars must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_rate_limit_not_disabled_in_production(self) -> "Settings":
        """Refuse to load a production config with rate limiting switched off."""
        if self.rate_limit_disabled and self.is_production:
            raise ValueError("RATE_LIMIT_DISABLED must not be set in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
