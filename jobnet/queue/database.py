"""Database-backed task queue.

Queue contents live in ``job_executions`` rows owned by a jobnet row. The
jobnet row's ``executor_id`` is the queue lock and each job row's
``executor_id`` is held while that job runs, so two executors never run the
same jobnet or the same job at once.
"""

from typing import Iterable, Optional

import structlog

from jobnet.db.job_execution import STATUS_FAILURE, STATUS_RUN, STATUS_SUCCESS
from jobnet.etl.errors import DoubleLockError
from jobnet.etl.reference import Ref
from jobnet.etl.result import JobResult
from jobnet.queue.base import JobTask, TaskQueue

logger = structlog.get_logger(__name__)


class DatabaseTaskQueue(TaskQueue):
    def __init__(self, dao, executor_id: str, enable_lock: bool = True):
        super().__init__()
        self.dao = dao
        self.executor_id = executor_id
        self.enable_lock = enable_lock
        self._jobnet_id: Optional[int] = None
        self._jobnet_ref = None

    def __repr__(self) -> str:
        return f"<DatabaseTaskQueue {self._jobnet_ref} executor={self.executor_id}>"

    @property
    def jobnet_id(self) -> int:
        if self._jobnet_id is None:
            raise RuntimeError("queue is not bound to any jobnet")
        return self._jobnet_id

    def _bind(self, jobnet) -> None:
        if self._jobnet_id is not None:
            return
        ref = jobnet.ref
        self._jobnet_id = self.dao.find_or_create_jobnet(ref.subsystem, ref.name)
        self._jobnet_ref = ref

    def restore_jobnet(self, jobnet) -> None:
        self._bind(jobnet)
        self.restore()

    def enqueue_jobnet(self, jobnet) -> None:
        self._bind(jobnet)
        self.enqueue(jobnet.execution_order())

    def enqueue(self, refs: Iterable[Ref]) -> None:
        for seq, ref in enumerate(refs, start=1):
            job_id = self.dao.find_or_create_job(self.jobnet_id, ref.subsystem, ref.name)
            if not self.dao.enqueue(job_id, seq):
                logger.warning("job_already_enqueued", job=str(ref), job_id=job_id)
        self.restore()
        logger.info("queue_enqueued", jobnet_id=self.jobnet_id, size=self.size())

    def restore(self) -> None:
        self._tasks = [
            JobTask(e.ref, e.execution_sequence, e.job_execution_id, e.job_id)
            for e in self.dao.enqueued_jobs(self.jobnet_id)
        ]

    def start_task(self, task: JobTask) -> None:
        if self.enable_lock and not self.dao.lock_job(task.job_id, self.executor_id):
            raise DoubleLockError(
                f"clear the job lock: jobnet {self._jobnet_ref}, job {task.ref} (job_id={task.job_id})"
            )
        self.dao.update_status(task.execution_id, task.job_id, STATUS_RUN)

    def fail_task(self, task: JobTask, result: JobResult) -> None:
        self.dao.update_status(task.execution_id, task.job_id, STATUS_FAILURE, result.describe())
        if self.enable_lock:
            self.dao.unlock_job(task.job_id, self.executor_id)

    def remove(self, task: JobTask) -> None:
        self.dao.update_status(task.execution_id, task.job_id, STATUS_SUCCESS)
        if self.enable_lock:
            self.dao.unlock_job(task.job_id, self.executor_id)
        super().remove(task)

    def locked(self) -> bool:
        if not self.enable_lock:
            return False
        return self.dao.jobnet_lock_owner(self.jobnet_id) is not None

    def _try_lock(self) -> bool:
        if not self.enable_lock:
            return True
        return self.dao.lock_jobnet(self.jobnet_id, self.executor_id)

    def unlock(self) -> None:
        if self.enable_lock:
            self.dao.unlock_jobnet(self.jobnet_id, self.executor_id)

    def force_unlock(self) -> None:
        self.dao.force_unlock_jobnet(self.jobnet_id)
        logger.warning("queue_force_unlocked", jobnet=str(self._jobnet_ref), jobnet_id=self.jobnet_id)

    def unlock_help(self) -> str:
        if self._jobnet_id is None:
            return "clear the lock: jobnet unlock --database JOBNET_FILE"
        owner = self.dao.jobnet_lock_owner(self._jobnet_id)
        return (
            f"clear the lock: jobnet unlock --database {self._jobnet_ref.relative_path} "
            f"(jobnet_id={self._jobnet_id}, locked by {owner})"
        )

    def cancel_jobnet(self, jobnet, message: str) -> None:
        self._bind(jobnet)
        canceled = self.dao.cancel_jobnet(self.jobnet_id, message)
        self.restore()
        logger.info("jobnet_canceled", jobnet_id=self.jobnet_id, canceled=len(canceled), message=message)
