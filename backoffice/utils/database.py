"""
Database connection and query utilities

Provides connection pooling, a per-thread unit of work and helper
methods for database operations
"""

import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Optional, Any, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor, register_uuid
from psycopg2.pool import ThreadedConnectionPool

from backoffice.utils.config import Settings, get_settings
from backoffice.utils.errors import PersistenceError

logger = logging.getLogger(__name__)

register_uuid()

# Errors raised because of what the request asked for, not because the
# database is unavailable.
CLIENT_FAULT_ERRORS = (psycopg2.IntegrityError, psycopg2.DataError)


def translate_error(error: psycopg2.Error) -> PersistenceError:
    """Wrap a driver error in the application's persistence error"""
    message = (getattr(error, "pgerror", None) or str(error)).strip()
    return PersistenceError(
        message or error.__class__.__name__,
        client_fault=isinstance(error, CLIENT_FAULT_ERRORS),
        cause=error,
    )


class Database:
    """Database connection manager with connection pooling"""

    def __init__(self, settings: Settings):
        """Store connection settings; the pool is created on first use"""
        self.settings = settings
        self.pool: Optional[ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._local = threading.local()

    def _initialize_pool(self):
        """Create connection pool"""
        try:
            if self.settings.DATABASE_URL:
                self.pool = ThreadedConnectionPool(
                    self.settings.DB_POOL_MIN,
                    self.settings.DB_POOL_MAX,
                    dsn=self.settings.DATABASE_URL
                )
            else:
                self.pool = ThreadedConnectionPool(
                    self.settings.DB_POOL_MIN,
                    self.settings.DB_POOL_MAX,
                    host=self.settings.DB_HOST,
                    port=self.settings.DB_PORT,
                    database=self.settings.DB_NAME,
                    user=self.settings.DB_USER,
                    password=self.settings.DB_PASSWORD
                )
            logger.info("Database connection pool initialized")
        except psycopg2.Error as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise translate_error(e) from e

    def _get_pool(self) -> ThreadedConnectionPool:
        if self.pool is None:
            with self._pool_lock:
                if self.pool is None:
                    self._initialize_pool()
        return self.pool

    @property
    def _pinned(self):
        return getattr(self._local, "conn", None)

    @contextmanager
    def transaction(self):
        """
        Run every query issued by this thread inside one transaction.

        Nested calls join the outer transaction. The connection is committed
        when the outermost block exits and rolled back if it raises.

        Usage:
            with db.transaction():
                db.execute_query("INSERT ...")
                db.execute_query("INSERT ...")
        """
        if self._pinned is not None:
            yield self._pinned
            return

        pool = self._get_pool()
        conn = pool.getconn()
        self._local.conn = conn
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise translate_error(e) from e
        except Exception:
            conn.rollback()
            logger.warning("Transaction rolled back")
            raise
        finally:
            self._local.conn = None
            pool.putconn(conn)

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections

        Inside ``transaction()`` the pinned connection is returned and left
        uncommitted; otherwise each block commits on its own.

        Usage:
            with db.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM table")
        """
        if self._pinned is not None:
            try:
                yield self._pinned
            except psycopg2.Error as e:
                logger.error(f"Database error: {e}")
                raise translate_error(e) from e
            return

        pool = self._get_pool()
        conn = None
        try:
            conn = pool.getconn()
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise translate_error(e) from e
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True):
        """
        Context manager for database cursors

        Args:
            dict_cursor: If True, returns results as dictionaries

        Usage:
            with db.get_cursor() as cursor:
                cursor.execute("SELECT * FROM table")
                results = cursor.fetchall()
        """
        with self.get_connection() as conn:
            cursor_factory = RealDictCursor if dict_cursor else None
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_query(
        self,
        query: str,
        params: Optional[Tuple] = None,
        fetch_one: bool = False,
        dict_cursor: bool = True
    ) -> Optional[Any]:
        """
        Execute a query and return results

        Also used for INSERT/UPDATE ... RETURNING statements.

        Args:
            query: SQL query string
            params: Query parameters
            fetch_one: If True, return single row; otherwise return all rows
            dict_cursor: If True, return results as dictionaries

        Returns:
            Query results (single row, list of rows, or None)
        """
        with self.get_cursor(dict_cursor=dict_cursor) as cursor:
            cursor.execute(query, params)
            if fetch_one:
                row = cursor.fetchone()
                return dict(row) if row is not None and dict_cursor else row
            rows = cursor.fetchall()
            return [dict(row) for row in rows] if dict_cursor else rows

    def execute_update(
        self,
        query: str,
        params: Optional[Tuple] = None
    ) -> int:
        """
        Execute an INSERT/UPDATE/DELETE query

        Args:
            query: SQL query string
            params: Query parameters

        Returns:
            Number of rows affected
        """
        with self.get_cursor(dict_cursor=False) as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def ping(self) -> bool:
        """Return True when the database answers a trivial query"""
        try:
            self.execute_query("SELECT 1 AS ok", fetch_one=True)
            return True
        except PersistenceError:
            return False

    def close(self):
        """Close all database connections in the pool"""
        if self.pool:
            self.pool.closeall()
            self.pool = None
            logger.info("Database connection pool closed")


@lru_cache()
def get_db() -> Database:
    """Process-wide database manager; connects lazily on first query"""
    return Database(get_settings())
