"""File-backed task queue.

The queue file holds one job reference per line in execution order. It is
rewritten atomically on every change and removed when the queue drains. The
sibling ``<queue>.LOCK`` file is the lock: it exists while a run holds it.
"""

import os
from pathlib import Path

import structlog

from jobnet.queue.base import JobTask, TaskQueue

logger = structlog.get_logger(__name__)


class FileTaskQueue(TaskQueue):
    @classmethod
    def restore_if_exist(cls, path) -> "FileTaskQueue":
        queue = cls(path)
        queue.restore()
        return queue

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"<FileTaskQueue {self.path}>"

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".LOCK")

    def queued(self) -> bool:
        return self.path.exists()

    def restore(self) -> None:
        if not self.path.exists():
            self._tasks = []
            return
        with open(self.path, encoding="utf-8") as f:
            lines = [line.strip() for line in f if line.strip()]
        self._tasks = [JobTask.deserialize(line, seq) for seq, line in enumerate(lines)]
        logger.debug("queue_restored", path=str(self.path), size=len(self._tasks))

    def save(self) -> None:
        if self.empty():
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for task in self._tasks:
                f.write(task.serialize() + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def locked(self) -> bool:
        return self.lock_path.exists()

    def _try_lock(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        os.close(fd)
        return True

    def unlock(self) -> None:
        self.lock_path.unlink(missing_ok=True)

    def unlock_help(self) -> str:
        return f"remove the file: {self.lock_path}"

    def cancel_jobnet(self, jobnet, message: str) -> None:
        super().cancel_jobnet(jobnet, message)
        logger.info("queue_canceled", path=str(self.path), message=message)
