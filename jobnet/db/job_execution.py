"""Job execution store.

Persists the database-backed task queue: one ``job_executions`` row per
(jobnet, job) pair, an append-only ``job_execution_states`` history, and the
``executor_id`` lock columns on ``jobnets`` and ``jobs``. Every lock change
is a single conditional update; the caller learns from the affected row
count whether it won.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

import psycopg2.extras
import structlog

from jobnet.db.connection import ConnectionPool, get_pool
from jobnet.etl.reference import JobRef
from jobnet.etl.retry import classify_exception, run_with_retry

logger = structlog.get_logger(__name__)

STATUS_WAIT = "waiting"
STATUS_RUN = "running"
STATUS_SUCCESS = "succeeded"
STATUS_FAILURE = "failed"
STATUS_CANCEL = "canceled"

UNFINISHED_STATUSES = (STATUS_WAIT, STATUS_RUN, STATUS_FAILURE)
CANCELABLE_STATUSES = (STATUS_WAIT, STATUS_FAILURE)


@dataclass
class JobExecution:
    job_execution_id: int
    job_id: int
    jobnet_id: int
    subsystem: str
    job_name: str
    execution_sequence: int
    status: str
    message: Optional[str] = None
    executor_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def ref(self) -> JobRef:
        return JobRef(self.subsystem, self.job_name)


class JobExecutionDAO:
    def __init__(self, pool: Optional[ConnectionPool] = None):
        self._pool = pool

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            self._pool = get_pool()
        return self._pool

    def _run(self, func: Callable, *args) -> Any:
        try:
            return run_with_retry(func, *args)
        except Exception as e:
            logger.error(
                "db_operation_failed",
                operation=func.__name__,
                category=classify_exception(e),
                error=str(e),
            )
            raise

    # --- jobnets / jobs ---

    def find_or_create_jobnet(self, subsystem: str, jobnet_name: str) -> int:
        return self._run(self._find_or_create_jobnet, subsystem, jobnet_name)

    def _find_or_create_jobnet(self, subsystem: str, jobnet_name: str) -> int:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO jobnets (subsystem, jobnet_name)
                    VALUES (%s, %s)
                    ON CONFLICT (subsystem, jobnet_name)
                    DO UPDATE SET subsystem = EXCLUDED.subsystem
                    RETURNING jobnet_id
                    """,
                    (subsystem, jobnet_name),
                )
                return cur.fetchone()[0]

    def find_or_create_job(self, jobnet_id: int, subsystem: str, job_name: str) -> int:
        return self._run(self._find_or_create_job, jobnet_id, subsystem, job_name)

    def _find_or_create_job(self, jobnet_id: int, subsystem: str, job_name: str) -> int:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO jobs (jobnet_id, subsystem, job_name)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (jobnet_id, subsystem, job_name)
                    DO UPDATE SET job_name = EXCLUDED.job_name
                    RETURNING job_id
                    """,
                    (jobnet_id, subsystem, job_name),
                )
                return cur.fetchone()[0]

    # --- queue contents ---

    def enqueue(self, job_id: int, execution_sequence: int) -> bool:
        """Submit a job unless it already has an unfinished execution.

        Returns True when a row was inserted or re-submitted.
        """
        return self._run(self._enqueue, job_id, execution_sequence)

    def _enqueue(self, job_id: int, execution_sequence: int) -> bool:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO job_executions (job_id, execution_sequence, status, submitted_at)
                    VALUES (%s, %s, %s, NOW())
                    ON CONFLICT (job_id) DO UPDATE
                    SET execution_sequence = EXCLUDED.execution_sequence,
                        status = EXCLUDED.status,
                        message = NULL,
                        submitted_at = EXCLUDED.submitted_at,
                        started_at = NULL,
                        finished_at = NULL
                    WHERE job_executions.status IN (%s, %s)
                    RETURNING job_execution_id
                    """,
                    (job_id, execution_sequence, STATUS_WAIT, STATUS_SUCCESS, STATUS_CANCEL),
                )
                row = cur.fetchone()
                if row is None:
                    return False
                self._insert_state(cur, row[0], job_id, STATUS_WAIT, None)
                return True

    def enqueued_jobs(self, jobnet_id: int) -> List[JobExecution]:
        """Unfinished executions of a jobnet, in submission order."""
        return self._run(self._enqueued_jobs, jobnet_id)

    def _enqueued_jobs(self, jobnet_id: int) -> List[JobExecution]:
        with self.pool.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT je.job_execution_id, je.job_id, j.jobnet_id, j.subsystem, j.job_name,
                           je.execution_sequence, je.status, je.message, j.executor_id,
                           je.submitted_at, je.started_at, je.finished_at
                    FROM job_executions je
                    JOIN jobs j ON j.job_id = je.job_id
                    WHERE j.jobnet_id = %s
                      AND je.status IN %s
                    ORDER BY je.execution_sequence, je.job_execution_id
                    """,
                    (jobnet_id, UNFINISHED_STATUSES),
                )
                return [JobExecution(**row) for row in cur.fetchall()]

    def update_status(self, job_execution_id: int, job_id: int, status: str, message: Optional[str] = None) -> None:
        self._run(self._update_status, job_execution_id, job_id, status, message)

    def _update_status(self, job_execution_id: int, job_id: int, status: str, message: Optional[str]) -> None:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                if status == STATUS_RUN:
                    cur.execute(
                        """
                        UPDATE job_executions
                        SET status = %s, message = NULL, started_at = NOW(), finished_at = NULL
                        WHERE job_execution_id = %s
                        """,
                        (status, job_execution_id),
                    )
                else:
                    cur.execute(
                        """
                        UPDATE job_executions
                        SET status = %s, message = %s, finished_at = NOW()
                        WHERE job_execution_id = %s
                        """,
                        (status, message, job_execution_id),
                    )
                self._insert_state(cur, job_execution_id, job_id, status, message)

    def cancel_jobnet(self, jobnet_id: int, message: str) -> List[int]:
        """Cancel waiting and failed executions; returns the canceled execution ids."""
        return self._run(self._cancel_jobnet, jobnet_id, message)

    def _cancel_jobnet(self, jobnet_id: int, message: str) -> List[int]:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE job_executions je
                    SET status = %s, message = %s, finished_at = NOW()
                    FROM jobs j
                    WHERE je.job_id = j.job_id
                      AND j.jobnet_id = %s
                      AND je.status IN %s
                    RETURNING je.job_execution_id, je.job_id
                    """,
                    (STATUS_CANCEL, message, jobnet_id, CANCELABLE_STATUSES),
                )
                rows = cur.fetchall()
                for job_execution_id, job_id in rows:
                    self._insert_state(cur, job_execution_id, job_id, STATUS_CANCEL, message)
                if rows:
                    cur.execute(
                        "UPDATE jobs SET executor_id = NULL WHERE job_id = ANY(%s)",
                        ([job_id for _, job_id in rows],),
                    )
                return [job_execution_id for job_execution_id, _ in rows]

    @staticmethod
    def _insert_state(cur, job_execution_id: int, job_id: int, status: str, message: Optional[str]) -> None:
        cur.execute(
            """
            INSERT INTO job_execution_states (job_execution_id, job_id, status, message)
            VALUES (%s, %s, %s, %s)
            """,
            (job_execution_id, job_id, status, message),
        )

    # --- locks ---

    def lock_jobnet(self, jobnet_id: int, executor_id: str) -> bool:
        return self._run(
            self._conditional_update,
            "UPDATE jobnets SET executor_id = %s WHERE jobnet_id = %s AND executor_id IS NULL",
            (executor_id, jobnet_id),
        )

    def unlock_jobnet(self, jobnet_id: int, executor_id: str) -> bool:
        return self._run(
            self._conditional_update,
            "UPDATE jobnets SET executor_id = NULL WHERE jobnet_id = %s AND executor_id = %s",
            (jobnet_id, executor_id),
        )

    def lock_job(self, job_id: int, executor_id: str) -> bool:
        return self._run(
            self._conditional_update,
            "UPDATE jobs SET executor_id = %s WHERE job_id = %s AND executor_id IS NULL",
            (executor_id, job_id),
        )

    def unlock_job(self, job_id: int, executor_id: str) -> bool:
        return self._run(
            self._conditional_update,
            "UPDATE jobs SET executor_id = NULL WHERE job_id = %s AND executor_id = %s",
            (job_id, executor_id),
        )

    def force_unlock_jobnet(self, jobnet_id: int) -> None:
        """Clear every lock of a jobnet; operator acknowledgement after a crash."""
        self._run(self._force_unlock_jobnet, jobnet_id)

    def _force_unlock_jobnet(self, jobnet_id: int) -> None:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE jobnets SET executor_id = NULL WHERE jobnet_id = %s", (jobnet_id,))
                cur.execute("UPDATE jobs SET executor_id = NULL WHERE jobnet_id = %s", (jobnet_id,))

    def jobnet_lock_owner(self, jobnet_id: int) -> Optional[str]:
        return self._run(self._jobnet_lock_owner, jobnet_id)

    def _jobnet_lock_owner(self, jobnet_id: int) -> Optional[str]:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT executor_id FROM jobnets WHERE jobnet_id = %s", (jobnet_id,))
                row = cur.fetchone()
                return row[0] if row else None

    def _conditional_update(self, sql: str, params: tuple) -> bool:
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount == 1
