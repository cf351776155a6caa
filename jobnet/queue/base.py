"""Task queue contract shared by the file and database backings."""

import contextlib
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional

import structlog

from jobnet.etl.errors import DoubleLockError
from jobnet.etl.reference import Ref
from jobnet.etl.result import JobResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class JobTask:
    """One pending job of a queue."""

    ref: Ref
    sequence: int = 0
    execution_id: Optional[int] = None
    job_id: Optional[int] = None

    def serialize(self) -> str:
        return str(self.ref)

    @classmethod
    def deserialize(cls, text: str, sequence: int = 0) -> "JobTask":
        return cls(Ref.parse(text), sequence)


class TaskQueue:
    """Ordered set of pending jobs with an advisory lock.

    This base class keeps its state in memory only; subclasses persist it.
    """

    def __init__(self):
        self._tasks: List[JobTask] = []
        self._locked = False

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[JobTask]:
        return iter(list(self._tasks))

    def size(self) -> int:
        return len(self._tasks)

    def empty(self) -> bool:
        return not self._tasks

    def queued(self) -> bool:
        """True when a previous run left unfinished jobs behind."""
        return not self.empty()

    def enqueue(self, refs: Iterable[Ref]) -> None:
        for ref in refs:
            self._tasks.append(JobTask(ref, len(self._tasks)))
        self.save()

    def enqueue_jobnet(self, jobnet) -> None:
        self.enqueue(jobnet.execution_order())

    def restore_jobnet(self, jobnet) -> None:
        self.restore()

    def peek(self) -> Optional[JobTask]:
        return self._tasks[0] if self._tasks else None

    def dequeue(self) -> JobTask:
        task = self.peek()
        if task is None:
            raise IndexError("dequeue from an empty queue")
        self.remove(task)
        return task

    def remove(self, task: JobTask) -> None:
        self._tasks.remove(task)
        self.save()

    def start_task(self, task: JobTask) -> None:
        pass

    def fail_task(self, task: JobTask, result: JobResult) -> None:
        pass

    def save(self) -> None:
        pass

    def restore(self) -> None:
        pass

    def locked(self) -> bool:
        return self._locked

    def _try_lock(self) -> bool:
        if self._locked:
            return False
        self._locked = True
        return True

    def lock(self) -> None:
        if not self._try_lock():
            raise DoubleLockError(self.unlock_help())

    def unlock(self) -> None:
        self._locked = False

    @contextlib.contextmanager
    def locking(self):
        self.lock()
        try:
            yield self
        finally:
            self.unlock()

    def unlock_help(self) -> str:
        return "unlock the queue."

    def cancel_jobnet(self, jobnet, message: str) -> None:
        self._tasks.clear()
        self.save()

    def consume_each(self, worker: Callable[[JobTask], JobResult]) -> Optional[JobResult]:
        """Run ``worker`` on each task in order while holding the lock.

        Returns None when the queue was drained, or the first result that did
        not succeed. The failed task is left at the head of the queue.
        """
        with self.locking():
            self.save()
            while not self.empty():
                task = self.peek()
                self.start_task(task)
                try:
                    result = worker(task)
                except BaseException as e:
                    self.fail_task(task, JobResult.for_exception(e))
                    raise
                if not result.is_success:
                    logger.info("queue_consume_stopped", job=str(task.ref), status=result.status_string)
                    self.fail_task(task, result)
                    return result
                self.dequeue()
        return None
