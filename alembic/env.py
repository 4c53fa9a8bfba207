from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from loadhunter.core.config import get_settings
from loadhunter.models.base import Base
import loadhunter.models  # noqa: F401 registers the Load Hunter tables

config = context.config
settings = get_settings()
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Load Hunter shares its database with the rest of the TMS; keep its revisions apart
VERSION_TABLE = "load_hunter_alembic_version"

_SYNC_DRIVERS = (
    ("sqlite+aiosqlite://", "sqlite://"),
    ("postgresql+asyncpg://", "postgresql+psycopg://"),
    ("postgresql://", "postgresql+psycopg://"),
    ("postgres://", "postgresql+psycopg://"),
)


def _migration_url() -> str:
    """Database URL for migrations, swapped onto a synchronous driver."""
    url = context.get_x_argument(as_dictionary=True).get("url", settings.database_url)
    for prefix, replacement in _SYNC_DRIVERS:
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def _include_object(obj, name, type_, reflected, compare_to):
    # Tables owned by other services are reflected but never ours to drop
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        include_object=_include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=_migration_url(), literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = _migration_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    try:
        with connectable.connect() as connection:
            # SQLite cannot ALTER most constraints in place
            _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
            with context.begin_transaction():
                context.run_migrations()
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
