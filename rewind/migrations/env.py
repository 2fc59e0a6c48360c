"""Alembic environment for Rewind.

The database URL comes from, in order: ``alembic -x dburl=...``, the
``sqlalchemy.url`` main option (set by the test suite), then the app config
for ``rewind_env``.
"""

from __future__ import annotations

import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine.url import make_url

sys.path.append(str(Path(__file__).resolve().parents[2]))

from rewind import create_app  # noqa: E402
from rewind.core.auth import models  # noqa: E402,F401
from rewind.extensions import db  # noqa: E402

config = context.config
logger = logging.getLogger("alembic.env")

if config.config_file_name and Path(config.config_file_name).exists():
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("dburl")
    if override:
        return override
    configured = config.get_main_option("sqlalchemy.url")
    if configured:
        return configured
    app = create_app(config.get_main_option("rewind_env", "development"))
    return app.config["SQLALCHEMY_DATABASE_URI"]


def _options(url: str) -> dict:
    # SQLite cannot ALTER columns in place; batch mode rebuilds the table.
    return {
        "target_metadata": db.metadata,
        "compare_type": True,
        "render_as_batch": make_url(url).get_backend_name() == "sqlite",
    }


def run_offline(url: str) -> None:
    context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_online(url: str) -> None:
    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_options(url))
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


url = _database_url()
logger.info("Migrating %s", make_url(url).render_as_string(hide_password=True))
if context.is_offline_mode():
    run_offline(url)
else:
    run_online(url)
