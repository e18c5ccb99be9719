"""Alembic environment for the knowledge_ingestor schema."""

from __future__ import annotations

import logging
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[import-untyped]
from knowledge_ingestor.models import Base
from knowledge_ingestor.utils.config import ensure_runtime_configuration, get_settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def get_database_url() -> str:
    """Resolve the target database: ``-x database_url=...`` first, then runtime settings."""

    override = context.get_x_argument(as_dictionary=True).get("database_url")
    if override:
        return override

    settings = ensure_runtime_configuration(get_settings())
    if not settings.database_url:
        raise RuntimeError("INGESTOR_DATABASE_URL is not configured")
    return settings.database_url


def _configure_kwargs(url: str) -> dict[str, object]:
    # SQLite cannot ALTER most constraints in place.
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
        "transaction_per_migration": True,
    }


def run_migrations_offline() -> None:
    url = get_database_url()
    context.configure(url=url, literal_binds=True, **_configure_kwargs(url))

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_database_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    logger.info("Running migrations against %s", connectable.url.render_as_string(hide_password=True))

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
