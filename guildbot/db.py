"""
Database Module - Async MySQL/MariaDB connection management.

Provides async database operations with:
- Native async connection pooling via asyncmy
- Query timeouts with bounded retry on timeout
- Security-focused query logging (no parameter values in logs)

API Overview:
- initialize_db_pool() / close_db_pool(): pool lifecycle, driven by the bot
- run_db_query(): execute a single query with commit or fetch options
"""

import asyncio
import re
import time
from typing import Any, Optional

from asyncmy import pool  # type: ignore
from asyncmy.errors import (  # type: ignore
    Error as AsyncMyError,
    DataError,
    IntegrityError,
    OperationalError,
    ProgrammingError,
)

from . import config
from .core.logger import ComponentLogger

# #################################################################################### #
#                            Database Pool Initialization
# #################################################################################### #
db_pool: Optional[pool.Pool] = None
_logger = ComponentLogger("database")

SLOW_QUERY_THRESHOLD = 0.5
QUERY_TIMEOUT_ATTEMPTS = 2


class DBQueryError(Exception):
    """
    Custom exception for database query errors.
    """
    pass


async def initialize_db_pool() -> bool:
    """
    Initialize async MySQL/MariaDB connection pool with configuration settings.

    Returns:
        True if pool initialization succeeded, False otherwise
    """
    global db_pool
    try:
        db_pool = await pool.create_pool(
            user=config.get_db_user(),
            password=config.get_db_password(),
            host=config.get_db_host(),
            port=config.get_db_port(),
            db=config.get_db_name(),
            minsize=1,
            maxsize=config.get_db_pool_size(),
            connect_timeout=config.get_db_timeout(),
            pool_recycle=3600,
            echo=config.get_debug(),
            charset="utf8mb4",
            autocommit=True,
        )
        _logger.info("pool_initialized",
            pool_size=config.get_db_pool_size(),
            timeout=config.get_db_timeout()
        )
        return True
    except (AsyncMyError, OSError) as e:
        _logger.critical("pool_init_failed",
            error_type=type(e).__name__,
            error_msg=str(e)
        )
        return False


async def close_db_pool() -> None:
    """
    Close the database pool and all connections.
    """
    global db_pool
    if db_pool:
        db_pool.close()
        await db_pool.wait_closed()
        db_pool = None
        _logger.info("pool_closed")


# #################################################################################### #
#                            Query Logging Utilities
# #################################################################################### #
def _safe_query_preview(query: str, length: int = 100) -> str:
    preview = " ".join(query.split())
    preview = re.sub(r"VALUES\s*\([^)]+\)", "VALUES(...)", preview)
    preview = re.sub(r"'[^']*'", "'?'", preview)
    return preview[:length] + "..." if len(preview) > length else preview


def safe_log_query(query: str, params: tuple) -> None:
    """
    Log query execution safely without exposing parameter values.

    Args:
        query: SQL query string
        params: Query parameters tuple
    """
    _logger.debug("query_executing",
        param_count=len(params) if params else 0,
        query_preview=_safe_query_preview(query)
    )


def safe_log_error(error: Exception, query: str) -> None:
    """
    Log query errors safely without exposing sensitive data.

    Args:
        error: Exception that occurred
        query: SQL query that failed
    """
    _logger.error("query_failed",
        error_type=type(error).__name__,
        query_preview=_safe_query_preview(query, 50)
    )


# #################################################################################### #
#                            Main Database Query Function
# #################################################################################### #
async def run_db_query(
    query: str,
    params: tuple = (),
    commit: bool = False,
    fetch_one: bool = False,
    fetch_all: bool = False,
) -> Optional[Any]:
    """
    Execute a database query with timeout handling.

    Args:
        query: SQL query string with %s placeholders
        params: Query parameters tuple (default: empty)
        commit: Whether to commit the transaction (default: False)
        fetch_one: Whether to fetch one row (default: False)
        fetch_all: Whether to fetch all rows (default: False)

    Returns:
        Query result or None depending on fetch parameters

    Raises:
        DBQueryError: If query execution fails
    """
    if db_pool is None:
        raise DBQueryError("Database pool not initialized")

    safe_log_query(query, params)

    async def _execute():
        start_time = time.perf_counter()
        async with db_pool.acquire() as conn:
            async with conn.cursor() as cursor:
                try:
                    await cursor.execute(query, params)

                    result = None
                    if commit:
                        await conn.commit()
                    elif fetch_one:
                        result = await cursor.fetchone()
                    elif fetch_all:
                        result = await cursor.fetchall()
                except (DataError, IntegrityError) as e:
                    safe_log_error(e, query)
                    raise DBQueryError(f"Database constraint error: {type(e).__name__}") from e
                except OperationalError as e:
                    safe_log_error(e, query)
                    raise DBQueryError("Database connection error") from e
                except ProgrammingError as e:
                    safe_log_error(e, query)
                    raise DBQueryError(f"Database query error: {type(e).__name__}") from e
                except AsyncMyError as e:
                    safe_log_error(e, query)
                    raise DBQueryError(f"Database error: {type(e).__name__}") from e

        execution_time = time.perf_counter() - start_time
        if execution_time > SLOW_QUERY_THRESHOLD:
            _logger.warning("slow_query_detected",
                execution_time_s=round(execution_time, 2),
                query_preview=_safe_query_preview(query)
            )
        return result

    for attempt in range(QUERY_TIMEOUT_ATTEMPTS):
        try:
            return await asyncio.wait_for(_execute(), timeout=config.get_db_timeout())
        except asyncio.TimeoutError:
            _logger.warning("query_timeout",
                attempt=attempt + 1,
                max_attempts=QUERY_TIMEOUT_ATTEMPTS
            )
            if attempt == QUERY_TIMEOUT_ATTEMPTS - 1:
                raise DBQueryError("Query timeout after multiple attempts")
            await asyncio.sleep(0.5 * (attempt + 1))
