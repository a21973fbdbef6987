"""Alembic migration environment.

The target database comes from the service's own settings (DATABASE_URL or
.env). Migrations run on a synchronous driver, so async dialects are mapped
to their sync counterparts:
    postgresql+asyncpg://...  →  postgresql://...
    sqlite+aiosqlite://...    →  sqlite://...
A `memory://` setting means there is nothing to migrate; alembic.ini's URL
is used instead.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from lendguard.core.config import get_settings
from lendguard.models.tables import Base

SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql://",
    "sqlite+aiosqlite://": "sqlite://",
}

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def sync_url(url: str) -> str:
    for async_prefix, sync_prefix in SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


settings = get_settings()
if not settings.uses_memory_store:
    config.set_main_option("sqlalchemy.url", sync_url(settings.database_url))


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
