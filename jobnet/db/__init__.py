"""Database module for jobnet-runner.

Provides connection pooling and the job execution store used by the
database-backed task queue.
"""

from jobnet.db.connection import (
    ConnectionPool,
    close_pool,
    get_pool,
)
from jobnet.db.job_execution import JobExecution, JobExecutionDAO
from jobnet.db.schema import create_schema

__all__ = [
    "ConnectionPool",
    "get_pool",
    "close_pool",
    "JobExecution",
    "JobExecutionDAO",
    "create_schema",
]
