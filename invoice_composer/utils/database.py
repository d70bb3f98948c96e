"""
Database connection and query utilities

Provides connection pooling and helper methods for the invoice store
"""

import psycopg2
from psycopg2.pool import SimpleConnectionPool
from psycopg2.extras import RealDictCursor
from typing import Optional, Any, Tuple
from contextlib import contextmanager
import logging

from invoice_composer.utils.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class Database:
    """Database connection manager with connection pooling"""

    def __init__(self, config: Optional[Settings] = None):
        """The pool is opened on first use"""
        self.config = config or default_settings
        self.pool: Optional[SimpleConnectionPool] = None

    def _initialize_pool(self):
        """Create connection pool"""
        try:
            self.pool = SimpleConnectionPool(
                minconn=self.config.DB_POOL_MIN,
                maxconn=self.config.DB_POOL_MAX,
                host=self.config.DB_HOST,
                port=self.config.DB_PORT,
                database=self.config.DB_NAME,
                user=self.config.DB_USER,
                password=self.config.DB_PASSWORD
            )
            logger.info(
                f"Database connection pool initialized ({self.config.DB_POOL_MIN}-{self.config.DB_POOL_MAX} "
                f"connections to {self.config.DB_HOST}:{self.config.DB_PORT}/{self.config.DB_NAME})"
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections; commits on success and
        rolls back on any error.

        Usage:
            with db.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM billing.invoices")
        """
        if self.pool is None:
            self._initialize_pool()
        conn = None
        try:
            conn = self.pool.getconn()
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            if conn:
                self.pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True):
        """
        Context manager for database cursors

        Args:
            dict_cursor: If True, returns rows as dictionaries
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
        Execute a query that returns rows

        Args:
            query: SQL query string
            params: Query parameters
            fetch_one: If True, return a single row; otherwise all rows
            dict_cursor: If True, return rows as dictionaries

        Returns:
            A single row, a list of rows, or None
        """
        with self.get_cursor(dict_cursor=dict_cursor) as cursor:
            cursor.execute(query, params)
            if fetch_one:
                return cursor.fetchone()
            return cursor.fetchall()

    def close(self):
        """Close all database connections in the pool"""
        if self.pool:
            self.pool.closeall()
            self.pool = None
            logger.info("Database connection pool closed")


# Global database instance
db = Database()


def get_db() -> Database:
    """Get the global database instance"""
    return db
