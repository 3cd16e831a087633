"""
Alembic migration environment configuration.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

from pricetracker.core.config import settings
from pricetracker.core.database import Base

# Import all models to ensure they're registered with Base.metadata
from pricetracker.models.price import Price  # noqa: F401
from pricetracker.models.product import Product  # noqa: F401
from pricetracker.models.product_source import ProductSource  # noqa: F401
from pricetracker.models.scrape_job import ScrapeJob  # noqa: F401
from pricetracker.models.scrape_source import ScrapeSource  # noqa: F401
from pricetracker.models.source_lock import SourceLock  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Target metadata for autogenerate support
target_metadata = Base.metadata


def sync_database_url(database_url: str) -> str:
    """Map the application URL onto a synchronous driver (psycopg2 / sqlite3)."""
    if database_url.startswith("sqlite"):
        return database_url.replace("+aiosqlite", "", 1)
    return database_url.replace("postgresql+asyncpg://", "postgresql://", 1)


# Override sqlalchemy.url from environment variable
config.set_main_option("sqlalchemy.url", sync_database_url(settings.DATABASE_URL))


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    This configures the context with just a URL and not an Engine.
    Calls to context.execute() here emit the given string to the
    script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations with the given connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # Sync driver avoids asyncpg sslmode issues
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        do_run_migrations(connection)

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
