"""Built-in job classes."""

import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from jobnet.etl.errors import JobFailure, JobFailureByException, ParameterError
from jobnet.etl.result import JobResult

logger = structlog.get_logger(__name__)

STDERR_TAIL_LINES = 20


class CommandParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    args: List[str] = Field(min_length=1)
    cwd: Optional[str] = None
    timeout_seconds: Optional[float] = Field(default=None, alias="timeout-seconds", gt=0)


class WaitFileParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    dest_file: str = Field(alias="dest-file")
    max_wait_minutes: float = Field(alias="max-wait-minutes", gt=0)
    interval_seconds: float = Field(default=5.0, alias="interval-seconds", gt=0)


def noop_job(params: Dict[str, Any]):
    def run():
        return JobResult.success()
    return run


def command_job(params: Dict[str, Any]):
    p = CommandParams.model_validate(params)

    def run():
        logger.info("command_started", args=p.args)
        try:
            proc = subprocess.run(
                p.args,
                cwd=p.cwd,
                capture_output=True,
                text=True,
                timeout=p.timeout_seconds,
            )
        except FileNotFoundError as e:
            raise ParameterError(f"command not found: {p.args[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise JobFailureByException(f"command timed out after {p.timeout_seconds}s", e) from e
        except OSError as e:
            raise JobFailureByException.wrap(e) from e
        if proc.returncode != 0:
            tail = "\n".join(proc.stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
            raise JobFailure(f"command failed with status {proc.returncode}: {tail}")
        return JobResult.success()

    return run


def wait_file_job(params: Dict[str, Any]):
    p = WaitFileParams.model_validate(params)

    def run():
        path = Path(p.dest_file)
        logger.info("wait_file_started", path=str(path), max_wait_minutes=p.max_wait_minutes)
        waiter = Retrying(
            retry=retry_if_result(lambda found: not found),
            stop=stop_after_delay(p.max_wait_minutes * 60),
            wait=wait_fixed(p.interval_seconds),
        )
        try:
            waiter(path.exists)
        except RetryError:
            logger.error("wait_file_limit_exceeded", path=str(path), max_wait_minutes=p.max_wait_minutes)
            return JobResult.failure(
                message=f"exceeded wait limit ({p.max_wait_minutes} minutes): {path}"
            )
        logger.info("wait_file_fulfilled", path=str(path))
        return JobResult.success()

    return run


def register_builtin_classes(registry) -> None:
    registry.register("noop", noop_job)
    registry.register("command", command_job)
    registry.register("wait-file", wait_file_job)
