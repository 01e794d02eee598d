# snapshot_service/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Every setting has a default so the service can boot against a local CouchDB
with no configuration at all; invalid cron expressions or timezones fail fast.
"""

from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Trigger name -> settings attribute holding its cron expression
SCHEDULE_FIELDS = {
    "granular": "SCHEDULE_GRANULAR",
    "hourly": "SCHEDULE_HOURLY",
    "daily": "SCHEDULE_DAILY",
    "weekly": "SCHEDULE_WEEKLY",
    "monthly": "SCHEDULE_MONTHLY",
    "cleanup": "SCHEDULE_CLEANUP",
    "stats": "SCHEDULE_STATS",
}


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # CouchDB connection
    COUCHDB_HOST: str = Field(default="couchdb", description="CouchDB hostname")
    COUCHDB_PORT: int = Field(default=5984, description="CouchDB port")
    COUCHDB_USER: str = Field(default="admin", description="CouchDB admin user")
    COUCHDB_PASSWORD: str = Field(default="password", description="CouchDB admin password")
    COUCHDB_SCHEME: str = Field(default="http", description="http or https")
    STORE_BACKEND: str = Field(
        default="couchdb",
        description="Document store backend: couchdb, memory",
    )
    STORE_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout for every store request",
    )

    # Tenant databases
    DATABASE_PATTERN: str = Field(
        default="creative-writer-stories",
        description="Name prefix shared by all tenant databases",
    )

    # Snapshot settings
    SNAPSHOT_ENABLED: bool = Field(
        default=True,
        description="Global switch. Only the literal 'false' disables the scheduler.",
    )
    MAX_SNAPSHOTS_PER_STORY: int = Field(
        default=500,
        ge=1,
        description="Safety cap on snapshots kept per story per database",
    )
    SNAPSHOT_CREATOR_URL: str | None = Field(
        default=None,
        description="Endpoint receiving 'create snapshots at tier T' requests. Unset = creation triggers disabled.",
    )

    # Schedules (cron expressions)
    SCHEDULE_GRANULAR: str = Field(default="*/15 * * * *", description="Every 15 minutes")
    SCHEDULE_HOURLY: str = Field(default="0 * * * *", description="Every hour")
    SCHEDULE_DAILY: str = Field(default="0 2 * * *", description="Daily at 2 AM")
    SCHEDULE_WEEKLY: str = Field(default="0 3 * * 0", description="Sunday at 3 AM")
    SCHEDULE_MONTHLY: str = Field(default="0 4 1 * *", description="1st of month at 4 AM")
    SCHEDULE_CLEANUP: str = Field(default="0 5 * * *", description="Daily at 5 AM")
    SCHEDULE_STATS: str = Field(default="0 */6 * * *", description="Statistics report every 6 hours")
    MISFIRE_GRACE_SECONDS: int = Field(
        default=300,
        ge=1,
        description="How late a trigger may still fire after a missed run time",
    )

    # Timezone for all cron triggers
    TZ: str = Field(default="Europe/Berlin", description="IANA timezone for schedules")

    # Performance tuning
    BATCH_SIZE: int = Field(
        default=10,
        ge=1,
        description="Number of tenant databases processed concurrently during fan-out",
    )
    IDLE_THRESHOLD_MINUTES: int = Field(
        default=5,
        ge=0,
        description="Forwarded to the snapshot creator: only snapshot stories idle this long",
    )
    STARTUP_CONNECT_ATTEMPTS: int = Field(
        default=5,
        ge=1,
        description="Connection attempts against the store before startup fails",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    LOG_JSON: bool = Field(default=True, description="Single-line JSON logs (False = human readable)")

    # Admin API
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="API key for admin endpoints. Unset = admin endpoints refuse all requests.",
    )

    @field_validator("SNAPSHOT_ENABLED", mode="before")
    @classmethod
    def parse_enabled(cls, v: Any) -> bool:
        """Anything other than an explicit 'false' keeps the service enabled."""
        if isinstance(v, str):
            return v.strip().lower() != "false"
        return bool(v)

    @field_validator(*SCHEDULE_FIELDS.values())
    @classmethod
    def validate_cron(cls, v: str) -> str:
        fields = v.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression '{v}' must have exactly 5 fields")
        return " ".join(fields)

    @field_validator("TZ")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @field_validator("STORE_BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        name = v.lower().strip()
        if name not in ("couchdb", "memory"):
            raise ValueError(f"Unknown store backend '{v}'. Available: couchdb, memory")
        return name

    @property
    def couchdb_url(self) -> str:
        """Base URL without credentials (auth is sent separately)."""
        return f"{self.COUCHDB_SCHEME}://{self.COUCHDB_HOST}:{self.COUCHDB_PORT}"

    @property
    def couchdb_auth(self) -> tuple[str, str]:
        return (self.COUCHDB_USER, self.COUCHDB_PASSWORD)

    @property
    def schedules(self) -> dict[str, str]:
        """Trigger name -> cron expression."""
        return {name: getattr(self, attr) for name, attr in SCHEDULE_FIELDS.items()}

    def safe_summary(self) -> dict:
        """Configuration for startup logging, without secrets."""
        return {
            "couchdb": {
                "host": self.COUCHDB_HOST,
                "port": self.COUCHDB_PORT,
                "user": self.COUCHDB_USER,
                "backend": self.STORE_BACKEND,
            },
            "snapshots": {
                "enabled": self.SNAPSHOT_ENABLED,
                "maxPerStory": self.MAX_SNAPSHOTS_PER_STORY,
                "idleThresholdMinutes": self.IDLE_THRESHOLD_MINUTES,
                "batchSize": self.BATCH_SIZE,
                "creator": "configured" if self.SNAPSHOT_CREATOR_URL else "none",
            },
            "databasePattern": self.DATABASE_PATTERN,
            "schedules": self.schedules,
            "timezone": self.TZ,
            "logLevel": self.LOG_LEVEL,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached service settings. Call at startup to validate config."""
    return Settings()
