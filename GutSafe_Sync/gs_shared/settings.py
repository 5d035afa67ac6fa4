from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from GutSafe_Sync.gs_shared import config


class SyncSettings(BaseSettings):
    """Externally configurable knobs for the sync core.

    Every field can be set through a ``GUTSAFE_``-prefixed environment
    variable or a ``.env`` file. Defaults come from ``config``.
    """

    model_config = SettingsConfigDict(env_prefix="GUTSAFE_", env_file=".env", extra="ignore")

    # Local store
    redis_host: str = config.REDIS_HOST
    redis_port: int = config.REDIS_PORT
    redis_db: int = config.REDIS_CACHE_DB

    # Remote relational store (used when the gateway is PostgreSQL)
    pg_dsn: Optional[str] = None

    # Network monitor
    probe_url: str = config.PROBE_URL
    probe_timeout_s: float = config.PROBE_TIMEOUT_SECONDS
    probe_interval_s: float = config.PROBE_INTERVAL_SECONDS
    probe_debounce_s: float = config.PROBE_DEBOUNCE_SECONDS

    # Sync coordinator
    sync_quality_threshold: int = config.SYNC_QUALITY_THRESHOLD
    max_attempts: int = config.MAX_ATTEMPTS
    submission_timeout_s: float = config.SUBMISSION_TIMEOUT_SECONDS
    drain_interval_s: float = config.DRAIN_INTERVAL_SECONDS
    backoff_base_s: float = config.BACKOFF_BASE_SECONDS
    backoff_cap_s: float = config.BACKOFF_CAP_SECONDS

    # Remote endpoint
    remote_base_url: str = config.REMOTE_BASE_URL

    # Retention
    retention_days: int = config.SYNCED_RETENTION_DAYS

    # Encryption key source, resolved once at startup
    encryption_secret: Optional[SecretStr] = None
    encryption_salt: str = config.ENCRYPTION_SALT
