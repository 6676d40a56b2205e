"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. Quota ceilings, transfer
sizes and polling cadence are hardcoded for consistency across deployments.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB


# ============================================================
# ACCOUNT TIERS
# ============================================================

class AccountTier:
    """
    Subscription tier identifiers.

    The tier is the only billing signal the service reads; it selects the
    storage ceiling applied by the admission gate.
    """
    FREE = "free"
    PREMIUM = "premium"


# ============================================================
# MEDIA TYPES
# ============================================================

ALLOWED_MIME_TYPES = frozenset({
    # Video
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
    "video/ogg",
    "video/3gpp",
    "video/3gpp2",
    # Audio
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/aac",
    "audio/flac",
    "audio/x-m4a",
    "audio/mp4",
    "audio/webm",
})


def is_allowed_mime_type(mime_type: Optional[str]) -> bool:
    """
    Check whether a MIME type may be stored in the media library.

    Any ``video/*`` or ``audio/*`` type is accepted, the explicit list only
    documents the formats the editor is known to handle.
    """
    if not mime_type:
        return False
    return (
        mime_type in ALLOWED_MIME_TYPES
        or mime_type.startswith("video/")
        or mime_type.startswith("audio/")
    )


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All quota and transfer settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "rendergate"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # AWS
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Storage areas (one bucket per area)
    media_library_bucket: str = "media-library"
    renders_bucket: str = "renders"

    # Render work queue
    render_queue_url: Optional[str] = None

    # Backends ("local" and "memory" run without AWS, for local development)
    storage_backend: Literal["s3", "local"] = "s3"
    local_storage_root: str = "/tmp/rendergate/storage"
    queue_backend: Literal["sqs", "memory"] = "sqs"
    job_store_backend: Literal["dynamodb", "memory"] = "dynamodb"

    # Render job table (shared with the render workers)
    render_jobs_table: str = "render-jobs"
    render_jobs_account_index: str = "account_id-created_at-index"

    # Security - shared secret for the scheduled cleanup trigger
    cron_secret: Optional[str] = None

    # Accounts with an active premium subscription
    premium_account_ids: list[str] = []

    # Stuck-job reaper
    stuck_render_timeout_minutes: int = 30

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    # Storage quotas
    @property
    def free_storage_limit_bytes(self) -> int:
        return 5 * GIB

    @property
    def premium_storage_limit_bytes(self) -> int:
        return 100 * GIB

    @property
    def max_file_size_bytes(self) -> int:
        return 1 * GIB  # Per-object ceiling, checked before the quota

    @property
    def listing_page_size(self) -> int:
        return 1000

    @property
    def signed_url_expiry_seconds(self) -> int:
        return 3600

    @property
    def max_zip_renders(self) -> int:
        return 20

    # Render size estimation
    @property
    def default_render_duration_seconds(self) -> float:
        return 30.0

    @property
    def default_render_width(self) -> int:
        return 1080

    @property
    def default_render_height(self) -> int:
        return 1920

    @property
    def hd_render_bytes_per_second(self) -> float:
        return 5 * MIB

    @property
    def sd_render_bytes_per_second(self) -> float:
        return 2.5 * MIB

    # Resumable uploads
    @property
    def upload_chunk_size_bytes(self) -> int:
        return 6 * MIB

    @property
    def upload_retry_delays_seconds(self) -> list[float]:
        return [0, 3, 5, 10, 20]

    @property
    def upload_cache_control_seconds(self) -> int:
        return 3600

    # Client polling
    @property
    def render_poll_interval_seconds(self) -> float:
        return 2.0

    @property
    def render_api_timeout_seconds(self) -> float:
        return 30.0

    def storage_limit_for(self, tier: str) -> int:
        """
        Get the storage ceiling for a subscription tier.

        Args:
            tier: One of the AccountTier constants

        Returns:
            Ceiling in bytes

        Raises:
            ValueError: If tier is not recognized
        """
        limits = {
            AccountTier.FREE: self.free_storage_limit_bytes,
            AccountTier.PREMIUM: self.premium_storage_limit_bytes,
        }
        if tier not in limits:
            raise ValueError(f"Unknown account tier: {tier}. Valid tiers: {list(limits)}")
        return limits[tier]

    def require_cron_secret(self) -> str:
        """
        Return the configured cleanup secret.

        Raises:
            RuntimeError: If CRON_SECRET is not configured
        """
        if not self.cron_secret:
            raise RuntimeError(
                "CRON_SECRET is not configured - refusing to start without a cleanup secret"
            )
        return self.cron_secret

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
