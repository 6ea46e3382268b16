"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="GUESTY_SYNC_",
        extra="ignore",
    )

    # Guesty open API credentials (client-credentials grant)
    client_id: str = Field(
        default="",
        description="Guesty API client ID",
    )
    client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Guesty API client secret",
    )
    api_base_url: str = Field(
        default="https://api.guesty.com/api/v2/",
        description="Base URL for both the identity and listings endpoints",
    )

    # HTTP timeouts
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for the listings request",
    )
    token_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for the token request",
    )

    # Token caching
    token_guard_seconds: int = Field(
        default=3600,
        ge=0,
        description="Seconds subtracted from the provider's token lifetime before caching",
    )
    token_fallback_ttl_seconds: int = Field(
        default=82800,
        ge=1,
        description="Cache TTL used when the token response has no usable expires_in",
    )

    # Sanitization
    max_photos: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum number of photo URLs kept per listing",
    )

    # Database
    database_path: str = Field(default="data/properties.db")

    # Scheduling
    sync_interval_minutes: int = Field(
        default=720,
        ge=1,
        description="Minutes between sync cycles in serve mode (twice daily by default)",
    )

    # Web display
    web_base_url: str = Field(
        default="",
        description="Public base URL of the listings page (e.g. https://rentals.example.com)",
    )
    web_port: int = Field(default=8000, description="Web server port")
    web_host: str = Field(default="0.0.0.0", description="Web server host")

    @field_validator("api_base_url")
    @classmethod
    def ensure_trailing_slash(cls, v: str) -> str:
        """Endpoint paths are joined onto the base URL, so it must end in '/'."""
        v = v.strip()
        return v if v.endswith("/") else f"{v}/"

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database (for image cache etc)."""
        return str(Path(self.database_path).parent)

    @property
    def has_credentials(self) -> bool:
        """True when both client ID and secret are configured."""
        return bool(self.client_id.strip()) and bool(self.client_secret.get_secret_value())
