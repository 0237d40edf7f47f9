from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults give a local SQLite database and an in-process decision cache.
    - Every field can be overridden with an ``APP_``-prefixed env var,
      e.g. ``APP_CACHE_STRATEGY=layered APP_REDIS_URL=redis://cache:6379/0``.
    """

    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    db_url: str | None = None
    log_level: str = "INFO"
    catalog_path: str | None = None
    seed_demo_data: bool = True

    # Decision cache: none | in_process | layered (in-process + redis)
    cache_strategy: str = "in_process"
    cache_ttl_seconds: int = Field(default=300, gt=0)
    cache_sweep_interval_seconds: int = Field(default=300, gt=0)
    cache_key_prefix: str = "rbac"
    redis_url: str | None = None
    redis_timeout_seconds: float = 0.5

    admin_role_name: str = "ADMIN"

    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "civic_authz.db"
        return f"sqlite:///{db_path}"

    def resolved_catalog_path(self) -> Path:
        if self.catalog_path:
            return Path(self.catalog_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "permission_catalog.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
