"""Database connection settings and engine creation."""

from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

# The connection always targets the standard PostgreSQL port; the configured port is not used.
POSTGRES_PORT = 5432

_DRIVER_ALIASES = {"postgres": "postgresql"}


@dataclass
class DBConfig:
    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    db_name: str = ""
    driver: str = ""


def connection_url(config: DBConfig) -> URL:
    """Build the connection URL for config, with SSL disabled."""
    if not config.driver:
        raise ValueError("database driver is not set")
    return URL.create(
        _DRIVER_ALIASES.get(config.driver, config.driver),
        username=config.user,
        password=config.password,
        host=config.host,
        port=POSTGRES_PORT,
        database=config.db_name,
        query={"sslmode": "disable"},
    )


def new_db(config: DBConfig) -> Engine:
    """Create a lazily connecting engine for config."""
    return create_engine(connection_url(config))