"""
Application configuration using Pydantic Settings.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Application
    ENVIRONMENT: str = Field(default="development", description="Environment name")
    DEBUG: bool = Field(default=False, description="Debug mode")

    # Server
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")

    # Database
    DATABASE_URL: str = Field(
        default="postgresql://localhost:5432/pricetracker",
        description="Database connection string (postgresql:// or sqlite://)",
    )

    # Inngest
    INNGEST_ENABLED: bool = Field(default=True, description="Mount Inngest serve endpoint")
    INNGEST_EVENT_KEY: Optional[str] = Field(default=None, description="Inngest event key")
    INNGEST_SIGNING_KEY: Optional[str] = Field(default=None, description="Inngest signing key")
    INNGEST_APP_ID: str = Field(default="pricetracker-api", description="Inngest app ID")
    UPDATE_SWEEP_CRON: str = Field(default="0 */6 * * *", description="Cron for update sweeps")
    REDISCOVERY_SWEEP_CRON: str = Field(
        default="30 * * * *", description="Cron for rediscovery sweeps"
    )

    # CORS
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Allowed CORS origins (comma-separated)",
    )

    # Extraction
    EXTRACTION_TIMEOUT: float = Field(default=30.0, description="Per-extraction timeout (seconds)")
    MAX_CONCURRENT_EXTRACTIONS: int = Field(
        default=5, ge=1, description="Max extractions in flight per job"
    )
    CRAWL_RATE_LIMIT_PER_DOMAIN: int = Field(
        default=10, description="Max requests per domain per minute"
    )
    USER_AGENT: str = Field(
        default="Mozilla/5.0 (compatible; PriceTrackerBot/1.0)",
        description="User agent for outbound requests",
    )

    # Discovery
    SERPAPI_API_KEY: Optional[str] = Field(default=None, description="SerpAPI key for discovery")
    DISCOVERY_MAX_RESULTS: int = Field(default=10, ge=1, description="Candidate URLs per query")

    # Source health policy
    SUCCESS_RATE_WEIGHT: float = Field(default=0.2, description="EMA weight for success rate")
    SUCCESS_RATE_NEUTRAL: float = Field(default=0.7, description="Prior for unproven recipes")
    REDISCOVERY_SUCCESS_RATE_THRESHOLD: float = Field(
        default=0.4, description="Success rate below which rediscovery is flagged"
    )
    STRUCTURAL_FAILURE_THRESHOLD: int = Field(
        default=3, description="Consecutive structural failures that flag rediscovery"
    )
    SOURCE_DEACTIVATION_THRESHOLD: int = Field(
        default=10, description="Consecutive failures that deactivate a source"
    )
    MAX_REDISCOVERY_ATTEMPTS: int = Field(
        default=2, description="Failed rediscoveries before a source is deactivated"
    )

    # Catalog
    CATALOG_MATCH_THRESHOLD: float = Field(
        default=90.0, description="Minimum name similarity (0-100) for a catalog match"
    )

    # Locks
    LOCK_TTL_SECONDS: int = Field(default=600, description="Lease length for source locks")
    CATALOG_LOCK_TTL_SECONDS: int = Field(
        default=30, description="Lease length for the shared catalog lock"
    )
    LOCK_WAIT_TIMEOUT: float = Field(default=30.0, description="Max wait for shared locks")
    LOCK_POLL_INTERVAL: float = Field(default=0.05, description="Lock polling interval")

    # Pagination
    DEFAULT_PAGE_SIZE: int = Field(default=20, description="Default page size")
    MAX_PAGE_SIZE: int = Field(default=500, description="Maximum page size")
    PRODUCT_PRICE_PREVIEW: int = Field(default=10, description="Prices embedded per product")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json or text)")

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins into list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v_upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
