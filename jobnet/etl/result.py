"""Job results and their process exit codes."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from jobnet.etl.errors import JobFailure

EXIT_SUCCESS = 0
EXIT_FAILURE = 1    # production time errors; expected / unavoidable job error
EXIT_ERROR = 2      # development time errors (bad option, bad parameter, bad configuration, bug)


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    JobStatus.SUCCESS: EXIT_SUCCESS,
    JobStatus.FAILURE: EXIT_FAILURE,
    JobStatus.ERROR: EXIT_ERROR,
}


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job (or of a whole jobnet)."""

    status: JobStatus
    message: Optional[str] = None
    exception: Optional[BaseException] = None
    ref: Optional[object] = None

    @classmethod
    def success(cls, message: Optional[str] = None) -> "JobResult":
        return cls(JobStatus.SUCCESS, message)

    @classmethod
    def failure(cls, exc: Optional[BaseException] = None, message: Optional[str] = None) -> "JobResult":
        return cls(JobStatus.FAILURE, message, exc)

    @classmethod
    def error(cls, exc: Optional[BaseException] = None, message: Optional[str] = None) -> "JobResult":
        return cls(JobStatus.ERROR, message, exc)

    @classmethod
    def for_bool(cls, ok: bool, message: Optional[str] = None) -> "JobResult":
        return cls(JobStatus.SUCCESS if ok else JobStatus.FAILURE, message)

    @classmethod
    def for_exception(cls, exc: BaseException) -> "JobResult":
        if isinstance(exc, JobFailure):
            return cls.failure(exc)
        return cls.error(exc)

    @classmethod
    def for_exit_code(cls, code: Optional[int], message: Optional[str] = None) -> "JobResult":
        """Classify a child process exit status."""
        if code == EXIT_SUCCESS:
            return cls(JobStatus.SUCCESS, message)
        if code == EXIT_FAILURE:
            return cls(JobStatus.FAILURE, message)
        if code is not None and code < 0:
            return cls(JobStatus.ERROR, message or f"job process killed by signal {-code}")
        return cls(JobStatus.ERROR, message or f"job process exited with status {code}")

    @property
    def is_success(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    @property
    def status_string(self) -> str:
        return self.status.value.upper()

    def for_ref(self, ref) -> "JobResult":
        return replace(self, ref=ref)

    def describe(self) -> str:
        if self.message:
            return self.message
        if self.exception is not None:
            return str(self.exception) or type(self.exception).__name__
        return "succeeded" if self.is_success else "failed"
