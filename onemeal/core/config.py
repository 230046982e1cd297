# Runtime configuration. Every field can be overridden from the environment
# or a local .env file; all of them have working defaults.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    PROJECT_NAME: str = "OneMeal"
    VERSION: str = "0.2.0"
    BRIEF_DESCRIPTION: str = "Anonymous recording of stray-animal feedings with privacy-preserving aggregate statistics."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")

    # --- Store ---
    REDIS_URL: str = Field("redis://localhost:6379/0", description="Redis URL for events, aggregates and quotas")
    REDIS_SOCKET_TIMEOUT: float = Field(5.0, gt=0, description="Per-command timeout in seconds")
    KEY_PREFIX: str = Field("onemeal", min_length=1, description="Namespace for every key written by the service")

    # --- Location privacy ---
    # 3 decimal places ~111 m at the equator, 2 decimal places ~1.1 km
    COORDINATE_PRECISION: int = Field(3, ge=0, le=8, description="Decimal places kept on stored events")
    REGION_PRECISION: int = Field(2, ge=0, le=8, description="Decimal places used for region buckets")

    # --- Rate limiting ---
    RATE_LIMIT_MAX_REQUESTS: int = Field(10, ge=1, description="Accepted feeds per identity per window")
    RATE_LIMIT_WINDOW_MS: int = Field(86_400_000, ge=1, description="Trailing window length in milliseconds")
    RATE_LIMIT_RECORD_RETENTION_DAYS: int = Field(7, ge=1, description="Age after which window bookkeeping is swept")

    # --- Retention ---
    DATA_RETENTION_DAYS: int = Field(90, ge=1, description="Raw feed events older than this are deleted")
    REGION_STALE_DAYS: int = Field(180, ge=1, description="Regions idle for longer than this may be pruned")
    REGION_MIN_RETAIN_COUNT: int = Field(5, ge=1, description="Regions with at least this many feeds are never pruned")
    SWEEP_BATCH_SIZE: int = Field(500, ge=1, description="Keys deleted per round trip by the retention job")

    # --- Summary ---
    SUMMARY_CACHE_SECONDS: int = Field(300, ge=0, description="Summary cache TTL, also advertised to HTTP caches")
    HEATMAP_LIMIT: int = Field(100, ge=1)
    TRENDING_DAYS: int = Field(30, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )


settings = Settings()
