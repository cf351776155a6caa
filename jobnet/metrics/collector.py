"""Prometheus metrics collector for jobnet execution."""

import time

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, write_to_textfile

from jobnet import __version__

# Job execution metrics
jobs_total = Counter(
    "jobnet_jobs_total",
    "Total number of jobs executed",
    ["jobnet", "status"],
)

job_duration_seconds = Histogram(
    "jobnet_job_duration_seconds",
    "Job execution duration in seconds",
    ["jobnet", "status"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
)

jobnets_total = Counter(
    "jobnet_runs_total",
    "Total number of jobnet runs",
    ["jobnet", "status"],
)

# Running jobs gauge
running_jobs = Gauge(
    "jobnet_running_jobs",
    "Number of currently running jobs",
)

queued_jobs = Gauge(
    "jobnet_queued_jobs",
    "Number of jobs remaining in the queue",
    ["jobnet"],
)

# Service info
service_info = Info(
    "jobnet_build_info",
    "Build information",
)

start_time = time.time()
uptime_seconds = Gauge(
    "jobnet_uptime_seconds",
    "Process uptime in seconds",
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for jobnet runs."""

    def __init__(self):
        service_info.info({"service": "jobnet-runner", "version": __version__})
        self._update_uptime()

    def _update_uptime(self):
        uptime_seconds.set(time.time() - start_time)

    def record_job_execution(self, jobnet: str, status: str, duration_seconds: float):
        """Record a job execution.

        Args:
            jobnet: Jobnet id (subsystem/name)
            status: Job status (success, failure, error)
            duration_seconds: Execution duration
        """
        jobs_total.labels(jobnet=jobnet, status=status).inc()
        job_duration_seconds.labels(jobnet=jobnet, status=status).observe(duration_seconds)

    def record_jobnet_execution(self, jobnet: str, status: str):
        jobnets_total.labels(jobnet=jobnet, status=status).inc()

    def update_running_jobs(self, count: int):
        running_jobs.set(count)

    def update_queue_size(self, jobnet: str, size: int):
        queued_jobs.labels(jobnet=jobnet).set(size)

    def write_textfile(self, path) -> None:
        """Write all metrics to ``path`` for the node exporter textfile collector."""
        self._update_uptime()
        write_to_textfile(str(path), REGISTRY)
