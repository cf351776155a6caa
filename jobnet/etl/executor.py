"""Job executors.

Runs compiled jobs either in the current process or in forked child
processes. A child reports back through its exit status and a small JSON
result file; the parent never shares memory with a running job.
"""

import json
import multiprocessing
import os
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass
from multiprocessing.connection import wait as wait_sentinels
from typing import Any, Dict, Optional, Tuple

import structlog

from jobnet.etl.result import JobResult

logger = structlog.get_logger(__name__)

# Jobs are arbitrary callables; fork avoids pickling them.
_fork = multiprocessing.get_context("fork")


def save_result(result: JobResult, path: str) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"status": result.status.value, "message": result.describe()}, f)
    except OSError as e:
        logger.warning("job_result_save_failed", path=path, error=str(e))


def restore_result(exitcode: Optional[int], path: str) -> JobResult:
    message = None
    try:
        with open(path, encoding="utf-8") as f:
            message = json.load(f).get("message")
    except FileNotFoundError:
        pass
    except (OSError, ValueError) as e:
        logger.warning("job_result_restore_failed", path=path, error=str(e))
    finally:
        if os.path.exists(path):
            os.remove(path)
    return JobResult.for_exit_code(exitcode, message)


def _child_main(unit: Any, result_path: str) -> None:
    try:
        result = unit.execute()
    except BaseException as e:  # noqa: BLE001
        logger.exception("job_process_error", job=str(unit.ref), error=str(e))
        result = JobResult.error(e)
    save_result(result, result_path)
    sys.exit(result.exit_code)


def _start_child(unit: Any, result_path: str):
    proc = _fork.Process(
        target=_child_main,
        args=(unit, result_path),
        name=f"jobnet [{unit.ref}]",
    )
    proc.start()
    logger.debug("job_process_started", job=str(unit.ref), pid=proc.pid)
    return proc


def run_isolated(unit: Any, result_path: str) -> JobResult:
    """Run ``unit`` in a forked child and wait for it."""
    proc = _start_child(unit, result_path)
    proc.join()
    return restore_result(proc.exitcode, result_path).for_ref(unit.ref)


class InlineExecutor:
    """Runs each job in the current process (single job and test runs)."""

    def execute(self, unit) -> JobResult:
        return unit.execute()


class ForkExecutor:
    """Runs each job in a forked child process and waits for it."""

    def __init__(self, tmpdir: Optional[str] = None):
        self.tmpdir = tmpdir

    def execute(self, unit) -> JobResult:
        with tempfile.TemporaryDirectory(prefix="jobnet-", dir=self.tmpdir) as workdir:
            return unit.execute_isolated(os.path.join(workdir, "result.json"))


@dataclass
class _Child:
    ref: Any
    process: Any
    result_path: str


class ParallelExecutor:
    """Bounded pool of forked job processes.

    Usage:
        with ParallelExecutor(n_max_jobs=3) as pool:
            while pool.acceptable():
                pool.start(unit)
            ref, result = pool.wait_any()
    """

    def __init__(self, n_max_jobs: int = 3, tmpdir: Optional[str] = None):
        if n_max_jobs < 1:
            raise ValueError(f"n_max_jobs must be positive: {n_max_jobs}")
        self.n_max_jobs = n_max_jobs
        self._running: Dict[int, _Child] = {}
        self._workdir = tempfile.TemporaryDirectory(prefix="jobnet-", dir=tmpdir)

    def __enter__(self) -> "ParallelExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._running:
            self.abort()
        self.close()

    @property
    def n_running(self) -> int:
        return len(self._running)

    def acceptable(self) -> bool:
        return self.n_running < self.n_max_jobs

    def start(self, unit) -> None:
        if not self.acceptable():
            raise RuntimeError(f"too many running jobs (max {self.n_max_jobs})")
        result_path = os.path.join(self._workdir.name, f"{uuid.uuid4().hex}.json")
        proc = _start_child(unit, result_path)
        self._running[proc.sentinel] = _Child(unit.ref, proc, result_path)

    def wait_any(self, timeout: Optional[float] = None) -> Optional[Tuple[Any, JobResult]]:
        """Wait until any running job exits; returns None on timeout or when idle."""
        if not self._running:
            return None
        ready = wait_sentinels(list(self._running), timeout)
        if not ready:
            return None
        child = self._running.pop(ready[0])
        child.process.join()
        result = restore_result(child.process.exitcode, child.result_path)
        return child.ref, result.for_ref(child.ref)

    def abort(self, grace_seconds: float = 0.0) -> None:
        """Reap every child, terminating the ones still running after ``grace_seconds``."""
        deadline = time.monotonic() + grace_seconds
        for child in list(self._running.values()):
            proc = child.process
            proc.join(max(0.0, deadline - time.monotonic()))
            if proc.is_alive():
                logger.warning("job_process_terminated", job=str(child.ref), pid=proc.pid)
                proc.terminate()
                proc.join(1.0)
            if proc.is_alive():
                proc.kill()
                proc.join()
            if os.path.exists(child.result_path):
                os.remove(child.result_path)
        self._running.clear()

    def close(self) -> None:
        self._workdir.cleanup()
