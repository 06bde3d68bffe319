# migrations/env.py

from __future__ import annotations
from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config, pool

from compliance_api.wsgi import app as flask_app
from compliance_api.extensions import db
from compliance_api.models import load_all

config = context.config

if config.config_file_name is not None:
    try:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    except (KeyError, ValueError):
        # alembic.ini without [loggers]; keep Flask's logging
        pass

with flask_app.app_context():
    load_all()
    DB_URI = flask_app.config["SQLALCHEMY_DATABASE_URI"]

config.set_main_option("sqlalchemy.url", DB_URI)
target_metadata = db.metadata

# compliance tables only; anything else in a shared database is left alone
OWNED_TABLES = {"stat_configs", "compliance_datasets", "compliance_scans", "compliance_reports"}


def _include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return name in OWNED_TABLES
    return True


def _configure(**kw) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        include_object=_include_object,
        render_as_batch=DB_URI.startswith("sqlite"),
        **kw,
    )


def run_offline() -> None:
    _configure(url=DB_URI, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection, flask_app.app_context():
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
