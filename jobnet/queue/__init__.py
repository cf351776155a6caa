"""Durable, lockable task queues for jobnet runs."""

from jobnet.queue.base import JobTask, TaskQueue
from jobnet.queue.database import DatabaseTaskQueue
from jobnet.queue.file import FileTaskQueue

__all__ = [
    "JobTask",
    "TaskQueue",
    "FileTaskQueue",
    "DatabaseTaskQueue",
]
