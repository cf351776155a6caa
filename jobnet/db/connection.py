"""PostgreSQL connections for the database task queue.

Jobs may run in forked children. A pool belongs to the process that opened
it: a child never hands its parent's sockets back to the server, it opens a
pool of its own on first use.
"""

import contextlib
import os
from typing import Generator, Optional

import psycopg2.pool
import structlog
from psycopg2.extensions import connection as PgConnection

from jobnet.config import get_settings

logger = structlog.get_logger(__name__)

APPLICATION_NAME = "jobnet-runner"


class ConnectionPool:
    """Threaded psycopg2 pool bound to the process that created it."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        minconn: int = 1,
        maxconn: int = 5,
    ):
        self.database_url = database_url or get_settings().database.url
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
        self._owner_pid: Optional[int] = None

    def initialize(self) -> None:
        if self._pool is not None and self._owner_pid == os.getpid():
            return
        if self._pool is not None:
            # inherited through fork; the parent still owns these sockets
            logger.debug("db_pool_discarded_after_fork", owner_pid=self._owner_pid)
            self._pool = None
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=self.minconn,
            maxconn=self.maxconn,
            dsn=self.database_url,
            application_name=APPLICATION_NAME,
        )
        self._owner_pid = os.getpid()
        logger.debug("db_pool_opened", maxconn=self.maxconn, pid=self._owner_pid)

    def close(self) -> None:
        if self._pool is None:
            return
        if self._owner_pid == os.getpid():
            self._pool.closeall()
        self._pool = None
        self._owner_pid = None

    @contextlib.contextmanager
    def get_connection(self) -> Generator[PgConnection, None, None]:
        """Borrow a connection for one transaction.

        The transaction commits when the block completes and rolls back when
        it raises. Job locks are taken inside such a transaction, so a
        conditional update is visible to other runners only after commit.
        """
        self.initialize()
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)


_pool: Optional[ConnectionPool] = None


def get_pool() -> ConnectionPool:
    """Return the process-wide pool, sized from ``database.pool_size``."""
    global _pool
    if _pool is None:
        _pool = ConnectionPool(maxconn=get_settings().database.pool_size)
    _pool.initialize()
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None
