"""
Application configuration, loaded from environment / .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── App ──
    app_name: str = "lendguard"
    app_env: str = "development"
    log_level: str = "INFO"
    engine_version: str = "2.0.0"

    # ── Database ──
    # "memory://" keeps everything in-process (dev / tests).
    database_url: str = "memory://"
    database_echo: bool = False

    # ── Tokens ──
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 7

    # ── Account security ──
    max_failed_logins: int = 5
    lockout_minutes: int = 30
    bcrypt_rounds: int = 12
    min_password_length: int = 8

    # ── Audit ──
    audit_default_page_size: int = 50
    audit_max_page_size: int = 500
    audit_export_limit: int = 10_000
    audit_recent_high_risk: int = 10

    # ── Bootstrap ──
    seed_default_configuration: bool = True
    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url.startswith("memory://")


@lru_cache
def get_settings() -> Settings:
    return Settings()
