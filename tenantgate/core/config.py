from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "tenantgate"
    log_level: str = "INFO"

    # Backend for tenant entitlements, user permissions and the plan catalog: memory|sql.
    store_backend: str = "memory"
    # Backend for bounded resource counters: memory|sql|redis.
    quota_backend: str = "memory"

    database_url: str = "sqlite:///./tenantgate.db"
    db_echo: bool = False

    # Redis connection used only when quota_backend=redis.
    redis_url: str = "redis://localhost:6379/0"
    # Namespace quota keys so several environments can share one Redis.
    quota_redis_prefix: str = "tenantgate:quota"

    # Maximum pinned personal notes per user.
    pinned_items_max: int = 5

    # Caller identity headers; token authentication is handled upstream.
    auth_tenant_header: str = "X-Tenant-Id"
    auth_user_header: str = "X-User-Id"
    # Comma-delimited user ids treated as platform administrators.
    platform_admin_ids: str = ""

    # Seed the default product feature catalog when the service is built.
    seed_default_features: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
