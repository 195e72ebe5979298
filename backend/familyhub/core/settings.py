import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class PushConfig(BaseModel):
    key_id: Optional[str] = None
    team_id: Optional[str] = None
    # Contents of the .p8 signing key. `auth_key_path` is read when this is empty.
    auth_key: Optional[str] = None
    auth_key_path: Optional[Path] = None
    bundle_id: str = Field(default="app.familyhub.home")
    use_sandbox: bool = True
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=5)

    def signing_key(self) -> Optional[str]:
        if self.auth_key:
            # Env-provided keys often carry literal "\n" sequences
            return self.auth_key.replace("\\n", "\n")
        if self.auth_key_path and self.auth_key_path.exists():
            return self.auth_key_path.read_text(encoding="utf-8")
        return None

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.team_id and self.signing_key())


class OAuthConfig(BaseModel):
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    # May contain "{provider}", e.g. https://host/api/integrations/{provider}/callback
    google_redirect_uri: Optional[str] = None
    authorize_url: str = Field(default="https://accounts.google.com/o/oauth2/v2/auth")
    token_url: str = Field(default="https://oauth2.googleapis.com/token")
    userinfo_url: str = Field(default="https://www.googleapis.com/oauth2/v2/userinfo")
    timeout_seconds: float = Field(default=10.0, gt=0)


class SecurityConfig(BaseModel):
    jwt_secret: str = Field(default="change-me-in-production-please", min_length=16)
    jwt_issuer: Optional[str] = None
    cron_secret: Optional[str] = None
    cors_origins: list[str] = Field(default_factory=list)


class DatabaseConfig(BaseModel):
    url: Optional[str] = None


class DataSourceConfig(BaseModel):
    openf1_base_url: str = Field(default="https://api.openf1.org/v1")
    f1_news_feed_url: str = Field(default="https://www.formula1.com/en/latest/all.xml")
    # Ergast-compatible results and standings
    jolpica_base_url: str = Field(default="https://api.jolpi.ca/ergast/f1")
    news_ttl_seconds: int = Field(default=30 * 60, ge=0)
    schedule_ttl_seconds: int = Field(default=6 * 60 * 60, ge=0)
    results_ttl_seconds: int = Field(default=15 * 60, ge=0)
    timeout_seconds: float = Field(default=8.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=5)


class SchedulerConfig(BaseModel):
    enabled: bool = False


class LocaleConfig(BaseModel):
    timezone: str = Field(default="Europe/Copenhagen")

    @field_validator("timezone", mode="before")
    def _strip(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class Settings(BaseModel):
    push: PushConfig
    oauth: OAuthConfig
    security: SecurityConfig
    database: DatabaseConfig
    data_sources: DataSourceConfig
    scheduler: SchedulerConfig
    locale: LocaleConfig

    model_config = ConfigDict(arbitrary_types_allowed=True)


DEFAULT_CONFIG_PATH = Path(os.environ.get("CONFIG_PATH", "config/config.json"))

SECTIONS = ("push", "oauth", "security", "database", "data_sources", "scheduler", "locale")

# (env var, section, field)
ENV_MAPPING: list[tuple[str, str, str]] = [
    ("APNS_KEY_ID", "push", "key_id"),
    ("APNS_TEAM_ID", "push", "team_id"),
    ("APNS_AUTH_KEY", "push", "auth_key"),
    ("APNS_AUTH_KEY_PATH", "push", "auth_key_path"),
    ("APNS_BUNDLE_ID", "push", "bundle_id"),
    ("APNS_USE_SANDBOX", "push", "use_sandbox"),
    ("GOOGLE_CLIENT_ID", "oauth", "google_client_id"),
    ("GOOGLE_CLIENT_SECRET", "oauth", "google_client_secret"),
    ("GOOGLE_REDIRECT_URI", "oauth", "google_redirect_uri"),
    ("JWT_SECRET", "security", "jwt_secret"),
    ("JWT_ISSUER", "security", "jwt_issuer"),
    ("CRON_SECRET", "security", "cron_secret"),
    ("DATABASE_URL", "database", "url"),
    ("OPENF1_BASE_URL", "data_sources", "openf1_base_url"),
    ("F1_NEWS_FEED_URL", "data_sources", "f1_news_feed_url"),
    ("F1_NEWS_TTL_SECONDS", "data_sources", "news_ttl_seconds"),
    ("F1_SCHEDULE_TTL_SECONDS", "data_sources", "schedule_ttl_seconds"),
    ("JOLPICA_BASE_URL", "data_sources", "jolpica_base_url"),
    ("F1_RESULTS_TTL_SECONDS", "data_sources", "results_ttl_seconds"),
    ("ENABLE_INTERNAL_CRON", "scheduler", "enabled"),
    ("APP_TIMEZONE", "locale", "timezone"),
]


def _load_file_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON configuration at {path}") from exc


def _load_env() -> dict[str, Any]:
    env_config: dict[str, Any] = {}

    for env_name, section, field in ENV_MAPPING:
        value = os.environ.get(env_name)
        if value:
            env_config.setdefault(section, {})[field] = value

    cors_origins = os.environ.get("CORS_ORIGINS")
    if cors_origins:
        env_config.setdefault("security", {})["cors_origins"] = [
            origin.strip() for origin in cors_origins.split(",") if origin.strip()
        ]

    return env_config


def merge_settings(env_config: dict[str, Any], file_config: dict[str, Any]) -> dict[str, Any]:
    return {
        section: {**file_config.get(section, {}), **env_config.get(section, {})}
        for section in SECTIONS
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    env_config = _load_env()
    file_config = _load_file_config(DEFAULT_CONFIG_PATH)
    merged = merge_settings(env_config=env_config, file_config=file_config)
    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:  # pragma: no cover
        raise RuntimeError(f"Configuration error: {exc}") from exc


__all__ = ["Settings", "get_settings"]
