"""Jobnet runner.

Drives one task queue to completion: compiles each queued job, executes it
through an executor and stops at the first job that does not succeed. The
failed job stays queued, so the next run resumes from it.
"""

import time
from typing import Dict, List, Optional, Tuple

import structlog

from jobnet.etl.errors import DoubleLockError, JobError, JobNetAborted
from jobnet.etl.executor import ForkExecutor, ParallelExecutor
from jobnet.etl.reference import Ref
from jobnet.etl.result import JobResult
from jobnet.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger(__name__)


class JobNetRunner:
    """Runs the jobs of a jobnet through a task queue.

    Args:
        compiler: Turns job references into runnable units (``JobCompiler``).
        executor: Runs one unit at a time; defaults to a ``ForkExecutor``.
        metrics: Metrics collector; defaults to the global collector.
        abort_grace_seconds: How long ``run_parallel`` lets running jobs
            finish before terminating them on an unexpected error.
    """

    def __init__(
        self,
        compiler,
        executor=None,
        metrics: Optional[MetricsCollector] = None,
        abort_grace_seconds: float = 0.0,
    ):
        self.compiler = compiler
        self.executor = executor or ForkExecutor()
        self.metrics = metrics or get_metrics_collector()
        self.abort_grace_seconds = abort_grace_seconds

    def prepare(self, jobnet, queue) -> None:
        """Resume the queue left by a previous run, or enqueue a fresh one."""
        queue.restore_jobnet(jobnet)
        if queue.locked():
            raise DoubleLockError(queue.unlock_help())
        if queue.queued():
            logger.info("jobnet_resumed", jobnet=jobnet.id, queued=queue.size())
        else:
            queue.enqueue_jobnet(jobnet)
            logger.info("jobnet_enqueued", jobnet=jobnet.id, queued=queue.size())
        self.metrics.update_queue_size(jobnet.id, queue.size())

    def check(self, jobnet) -> List:
        """Compile every job of the jobnet without running any of them."""
        units = [self.compiler.compile(ref) for ref in jobnet.execution_order()]
        logger.info("jobnet_checked", jobnet=jobnet.id, jobs=len(units))
        return units

    def execute(self, jobnet, queue, n_max_jobs: int = 1) -> JobResult:
        """Prepare and run the jobnet; raises ``JobNetAborted`` unless every job succeeds."""
        self.prepare(jobnet, queue)
        if n_max_jobs > 1:
            result = self.run_parallel(jobnet, queue, n_max_jobs)
        else:
            result = self.run(jobnet, queue)
        if not result.is_success:
            raise JobNetAborted(jobnet.id, result.ref, result)
        return result

    def run(self, jobnet, queue) -> JobResult:
        log = logger.bind(jobnet=jobnet.id)
        log.info("jobnet_started", queued=queue.size(), mode="sequential")

        def worker(task) -> JobResult:
            return self._run_task(jobnet, task)

        failed = queue.consume_each(worker)
        result = failed or JobResult.success()
        self._finish(jobnet, queue, result)
        return result

    def run_parallel(self, jobnet, queue, n_max_jobs: int) -> JobResult:
        """Run queued jobs concurrently, at most ``n_max_jobs`` at a time.

        A job starts only after all of its nearest upstream jobs have left the
        queue. After the first failure no new job starts; jobs already running
        are waited for and their outcomes recorded.
        """
        log = logger.bind(jobnet=jobnet.id)
        dependencies = jobnet.job_dependencies()
        failure: Optional[JobResult] = None

        with queue.locking():
            queue.save()
            pending = list(queue)
            running: Dict[Ref, Tuple[object, float]] = {}
            log.info("jobnet_started", queued=len(pending), mode="parallel", n_max_jobs=n_max_jobs)

            with ParallelExecutor(n_max_jobs) as pool:
                try:
                    while True:
                        if failure is None:
                            failure = self._start_ready_tasks(
                                jobnet, queue, pool, pending, running, dependencies
                            )
                        if not running:
                            break
                        ret = pool.wait_any()
                        if ret is None:
                            continue
                        ref, result = ret
                        task, started = running.pop(ref)
                        self.metrics.update_running_jobs(len(running))
                        self._record(jobnet, result, time.monotonic() - started)
                        if result.is_success:
                            queue.remove(task)
                            self.metrics.update_queue_size(jobnet.id, queue.size())
                        else:
                            queue.fail_task(task, result)
                            if failure is None:
                                failure = result
                                log.warning("jobnet_stopping", cause=str(ref), running=len(running))
                except BaseException:
                    log.exception("jobnet_interrupted", running=len(running))
                    pool.abort(self.abort_grace_seconds)
                    for task, _ in running.values():
                        queue.fail_task(task, JobResult.error(message="aborted"))
                    self.metrics.update_running_jobs(0)
                    raise

            if failure is None and pending:
                failure = JobResult.error(
                    message=f"no runnable job left in queue: {', '.join(str(t.ref) for t in pending)}"
                )

        result = failure or JobResult.success()
        self._finish(jobnet, queue, result)
        return result

    def _start_ready_tasks(self, jobnet, queue, pool, pending, running, dependencies) -> Optional[JobResult]:
        for task in list(pending):
            if not pool.acceptable():
                break
            unresolved = {t.ref for t in pending} | set(running)
            if dependencies.get(task.ref, set()) & unresolved:
                continue
            pending.remove(task)
            started = time.monotonic()
            try:
                unit = self.compiler.compile(task.ref)
            except JobError as e:
                result = self._compile_error(task, e)
                self._record(jobnet, result, time.monotonic() - started)
                queue.fail_task(task, result)
                return result
            queue.start_task(task)
            pool.start(unit)
            running[task.ref] = (task, started)
            self.metrics.update_running_jobs(len(running))
        return None

    def _run_task(self, jobnet, task) -> JobResult:
        started = time.monotonic()
        try:
            unit = self.compiler.compile(task.ref)
        except JobError as e:
            result = self._compile_error(task, e)
        else:
            self.metrics.update_running_jobs(1)
            try:
                result = self.executor.execute(unit)
            finally:
                self.metrics.update_running_jobs(0)
        self._record(jobnet, result, time.monotonic() - started)
        return result

    @staticmethod
    def _compile_error(task, exc: JobError) -> JobResult:
        logger.error("job_compile_failed", job=str(task.ref), error=str(exc))
        return JobResult.error(exc).for_ref(task.ref)

    def _record(self, jobnet, result: JobResult, duration: float) -> None:
        self.metrics.record_job_execution(jobnet.id, result.status.value, duration)
        if not result.is_success:
            logger.error(
                "job_unsuccessful",
                jobnet=jobnet.id,
                job=str(result.ref),
                status=result.status_string,
                message=result.describe(),
            )

    def _finish(self, jobnet, queue, result: JobResult) -> None:
        self.metrics.record_jobnet_execution(jobnet.id, result.status.value)
        self.metrics.update_queue_size(jobnet.id, queue.size())
        if result.is_success:
            logger.info("jobnet_succeeded", jobnet=jobnet.id)
        else:
            logger.error(
                "jobnet_failed",
                jobnet=jobnet.id,
                cause=str(result.ref),
                status=result.status_string,
                message=result.describe(),
            )
