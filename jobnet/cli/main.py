"""Command-line interface for jobnet-runner.

Exit status of ``run`` follows the jobnet result: 0 on success, 1 when a job
failed for operational reasons, 2 on configuration errors and defects.
"""

import os
import socket
from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.table import Table

from jobnet.config import configure_logging, get_settings, reload_settings
from jobnet.config.settings import ENVIRONMENTS
from jobnet.etl import (
    ApplicationError,
    ForkExecutor,
    InlineExecutor,
    JobCompiler,
    JobError,
    JobNetAborted,
    JobNetRef,
    JobNetRunner,
    load_jobnet,
)
from jobnet.etl.result import EXIT_ERROR, EXIT_FAILURE, EXIT_SUCCESS
from jobnet.metrics import get_metrics_collector
from jobnet.queue import DatabaseTaskQueue, FileTaskQueue, TaskQueue

console = Console(stderr=True)
logger = structlog.get_logger(__name__)


def default_executor_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def _queue_path(jobnet_ref: JobNetRef, queue: Optional[str]) -> Optional[Path]:
    if queue:
        return Path(queue)
    queue_dir = get_settings().queue.dir
    if queue_dir:
        return Path(queue_dir) / f"{jobnet_ref.subsystem}.{jobnet_ref.name}.queue"
    return None


def uses_database_queue(queue: Optional[str], database: bool) -> bool:
    return database or (not queue and get_settings().queue.backend == "database")


def build_queue(jobnet_ref: JobNetRef, queue: Optional[str], database: bool, executor_id: Optional[str]) -> TaskQueue:
    """Pick the queue backing from options, falling back to settings."""
    settings = get_settings()
    if uses_database_queue(queue, database):
        from jobnet.db import JobExecutionDAO

        return DatabaseTaskQueue(
            JobExecutionDAO(),
            executor_id or default_executor_id(),
            enable_lock=settings.queue.enable_lock,
        )
    path = _queue_path(jobnet_ref, queue)
    if path is None:
        return TaskQueue()
    return FileTaskQueue(path)


def _exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, JobNetAborted):
        return exc.result.exit_code
    if isinstance(exc, JobError):
        return EXIT_ERROR
    if isinstance(exc, ApplicationError):
        return EXIT_FAILURE
    return EXIT_ERROR


@click.group()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.option(
    "--environment",
    "-e",
    type=click.Choice(ENVIRONMENTS),
    help="Environment; reads config/<environment>.yaml under the jobnet home",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, environment: Optional[str]) -> None:
    """Batch jobnet runner."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    settings = reload_settings(environment) if environment else get_settings()
    configure_logging(settings.logging, verbose=verbose)


@cli.command()
@click.argument("jobnet_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--queue", "queue_path", type=click.Path(dir_okay=False), help="Use a file task queue at PATH")
@click.option("--database", is_flag=True, help="Use the database task queue")
@click.option("--executor-id", help="Lock owner id for the database queue (default: host:pid)")
@click.option("--parallel", "n_max_jobs", type=click.IntRange(min=1), help="Run up to N jobs concurrently")
@click.option("--isolate/--inline", default=None, help="Run each job in a child process (default from settings)")
@click.option("--home", type=click.Path(file_okay=False), help="Job file directory (default: jobnet home)")
@click.option("--check-only", is_flag=True, help="Compile every job without running them")
@click.option("--list-jobs", is_flag=True, help="Print the execution order and exit")
@click.option("--metrics-file", type=click.Path(dir_okay=False), help="Write prometheus metrics to PATH")
@click.pass_context
def run(
    ctx: click.Context,
    jobnet_file: str,
    queue_path: Optional[str],
    database: bool,
    executor_id: Optional[str],
    n_max_jobs: Optional[int],
    isolate: Optional[bool],
    home: Optional[str],
    check_only: bool,
    list_jobs: bool,
    metrics_file: Optional[str],
) -> None:
    """Run a jobnet, resuming its queue when a previous run failed."""
    settings = get_settings()
    if queue_path and database:
        console.print("[red]Error: Cannot specify both --queue and --database[/red]")
        ctx.exit(EXIT_ERROR)

    exit_code = EXIT_SUCCESS
    try:
        jobnet = load_jobnet(jobnet_file)
        if list_jobs:
            for ref in jobnet.execution_order():
                click.echo(str(ref))
            return

        if isolate is None:
            isolate = settings.executor.isolation == "process"
        job_home = home or settings.home or Path(jobnet_file).resolve().parent.parent
        runner = JobNetRunner(
            JobCompiler(job_home),
            ForkExecutor() if isolate else InlineExecutor(),
            abort_grace_seconds=settings.executor.abort_grace_seconds,
        )
        if check_only:
            units = runner.check(jobnet)
            console.print(f"[green]OK: {len(units)} jobs compiled[/green]")
            return

        queue = build_queue(jobnet.ref, queue_path, database, executor_id)
        runner.execute(jobnet, queue, n_max_jobs=n_max_jobs or settings.executor.max_parallel_jobs)
        console.print(f"[green]jobnet {jobnet.id} succeeded[/green]")
    except JobNetAborted as e:
        console.print(f"[red]{e}: {e.result.status_string}: {e.result.describe()}[/red]")
        exit_code = _exit_code_for(e)
    except ApplicationError as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.error("cli_run_error", error=str(e), error_type=type(e).__name__)
        exit_code = _exit_code_for(e)
    except Exception as e:
        console.print(f"[red]Error: {type(e).__name__}: {e}[/red]")
        logger.exception("cli_run_error", error=str(e))
        exit_code = EXIT_ERROR
    finally:
        if metrics_file:
            get_metrics_collector().write_textfile(metrics_file)
        if uses_database_queue(queue_path, database):
            from jobnet.db import close_pool

            close_pool()
    ctx.exit(exit_code)


@cli.command()
@click.argument("jobnet_file", required=False, type=click.Path(dir_okay=False))
@click.option("--queue", "queue_path", type=click.Path(dir_okay=False), help="File task queue to unlock")
@click.option("--database", is_flag=True, help="Clear the database locks of JOBNET_FILE")
@click.pass_context
def unlock(ctx: click.Context, jobnet_file: Optional[str], queue_path: Optional[str], database: bool) -> None:
    """Clear a queue lock left behind by a crashed run."""
    try:
        if database:
            if not jobnet_file:
                raise click.UsageError("--database requires JOBNET_FILE")
            from jobnet.db import JobExecutionDAO

            ref = JobNetRef.for_path(Path(jobnet_file))
            dao = JobExecutionDAO()
            jobnet_id = dao.find_or_create_jobnet(ref.subsystem, ref.name)
            dao.force_unlock_jobnet(jobnet_id)
            console.print(f"[green]unlocked jobnet {ref.id} (jobnet_id={jobnet_id})[/green]")
            return
        if not queue_path and jobnet_file:
            queue_path = _queue_path(JobNetRef.for_path(Path(jobnet_file)), None)
        if not queue_path:
            raise click.UsageError("specify --queue PATH, or JOBNET_FILE with a configured queue dir")
        queue = FileTaskQueue(queue_path)
        if not queue.locked():
            console.print(f"[yellow]not locked: {queue.lock_path}[/yellow]")
            return
        queue.unlock()
        logger.warning("queue_force_unlocked", path=str(queue.path))
        console.print(f"[green]removed {queue.lock_path}[/green]")
    except click.UsageError:
        raise
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("cli_unlock_error", error=str(e))
        ctx.exit(EXIT_ERROR)


@cli.command()
@click.argument("jobnet_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--queue", "queue_path", type=click.Path(dir_okay=False), help="File task queue to cancel")
@click.option("--database", is_flag=True, help="Cancel the database queue")
@click.option("--message", default="canceled by operator", show_default=True, help="Reason recorded with the cancel")
@click.pass_context
def cancel(ctx: click.Context, jobnet_file: str, queue_path: Optional[str], database: bool, message: str) -> None:
    """Drop the remaining jobs of an aborted run."""
    try:
        jobnet = load_jobnet(jobnet_file)
        queue = build_queue(jobnet.ref, queue_path, database, None)
        queue.restore_jobnet(jobnet)
        if queue.locked():
            console.print(f"[red]Error: queue is locked; {queue.unlock_help()}[/red]")
            ctx.exit(EXIT_ERROR)
        remaining = queue.size()
        queue.cancel_jobnet(jobnet, message)
        console.print(f"[green]canceled {remaining} jobs of {jobnet.id}[/green]")
    except ApplicationError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(_exit_code_for(e))


@cli.command()
@click.argument("jobnet_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def show(ctx: click.Context, jobnet_file: str) -> None:
    """Show the jobs of a jobnet, batch by batch."""
    try:
        jobnet = load_jobnet(jobnet_file)
    except ApplicationError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(_exit_code_for(e))
        return

    dependencies = jobnet.job_dependencies()
    table = Table(title=f"Jobnet {jobnet.id}")
    table.add_column("Batch", style="cyan", justify="right")
    table.add_column("Job", style="green")
    table.add_column("Depends On", style="magenta")
    for i, batch in enumerate(jobnet.topological_batches(), start=1):
        for ref in batch:
            deps = ", ".join(sorted(str(d) for d in dependencies.get(ref, ())))
            table.add_row(str(i), str(ref), deps or "-")
    Console().print(table)


@cli.command("init-db")
def init_db() -> None:
    """Create the database queue tables."""
    from jobnet.db import close_pool, create_schema, get_pool

    try:
        create_schema(get_pool())
    finally:
        close_pool()
    console.print("[green]database schema created[/green]")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
