"""Database pre-flight checks.

Used by the ``connect`` command and by ``restore --create-db``.  Engines are
short-lived and unpooled: each call opens one connection and disposes the
engine afterwards.

Usage:
    from dr_orchestrator.database import check_connection, ensure_database

    version = await check_connection(params)
    created = await ensure_database(params, "app_restored")
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from dr_orchestrator.backup.models import ConnectionParams
from dr_orchestrator.errors import ValidationError

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"
CONNECT_TIMEOUT = 5


def build_url(params: ConnectionParams, database: str | None = None) -> URL:
    """SQLAlchemy URL for ``params`` using the ``asyncpg`` driver.

    Args:
        params: Connection parameters.
        database: Database to connect to instead of ``params.database``.
    """
    return URL.create(
        "postgresql+asyncpg",
        username=params.user,
        password=params.password,
        host=params.host,
        port=params.port,
        database=database or params.database,
    )


def _create_engine(url: URL, **kwargs: Any) -> AsyncEngine:
    return create_async_engine(
        url,
        poolclass=NullPool,
        connect_args={"timeout": CONNECT_TIMEOUT},
        **kwargs,
    )


async def check_connection(params: ConnectionParams) -> str:
    """Connect and return the server version string.

    Raises:
        ValidationError: If the connection or query fails.
    """
    engine = _create_engine(build_url(params))
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT version()"))
            version = result.scalar_one()
    except Exception as e:
        raise ValidationError(f"Failed to connect to database: {e}") from e
    finally:
        await engine.dispose()

    logger.debug(f"Connected to {params.host}:{params.port}/{params.database}")
    return version


async def ensure_database(params: ConnectionParams, name: str) -> bool:
    """Create database ``name`` if it does not exist.

    Connects to the ``postgres`` maintenance database in autocommit mode,
    since ``CREATE DATABASE`` cannot run inside a transaction.

    Returns:
        True if the database was created, False if it already existed.

    Raises:
        ValidationError: If the name is empty or the server rejects the request.
    """
    if not name:
        raise ValidationError("Database name is required")

    engine = _create_engine(
        build_url(params, MAINTENANCE_DATABASE), isolation_level="AUTOCOMMIT"
    )
    try:
        async with engine.connect() as conn:
            result = await conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": name},
            )
            if result.scalar() is not None:
                return False

            quoted = engine.dialect.identifier_preparer.quote_identifier(name)
            await conn.execute(text(f"CREATE DATABASE {quoted}"))
    except Exception as e:
        raise ValidationError(f"Failed to create database {name}: {e}") from e
    finally:
        await engine.dispose()

    logger.info(f"Created database '{name}'")
    return True
