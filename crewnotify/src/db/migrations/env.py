"""
Alembic environment for the crew-notify schema.

The target database comes from CREWNOTIFY_DB_URL (environment or
crewnotify/.env), falling back to sqlalchemy.url in alembic.ini.
SQLite runs in batch mode so ALTER-style migrations work there too.
"""

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from crewnotify.src.models import Base


load_dotenv(dotenv_path=Path(__file__).resolve().parents[3] / ".env")

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if os.environ.get("CREWNOTIFY_DB_URL"):
    config.set_main_option("sqlalchemy.url", os.environ["CREWNOTIFY_DB_URL"])

target_metadata = Base.metadata


def _configure_options(dialect_name: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": dialect_name == "sqlite",
    }


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url.split(":", 1)[0].split("+", 1)[0]),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a dedicated, unpooled connection."""
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(connection=connection, **_configure_options(connection.dialect.name))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
