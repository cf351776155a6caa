from typing import Optional


class ApplicationError(Exception):
    """Common base class of handleable jobnet errors."""
    pass


class JobFailure(ApplicationError):
    """Operational job failure.

    May occur in production and is expected to be recoverable by an operator,
    e.g. bad source data, SQL error, lock timeout.
    """
    pass


class JobFailureByException(JobFailure):
    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original

    @classmethod
    def wrap(cls, exc: BaseException) -> "JobFailureByException":
        return cls(str(exc), exc)


class TransientError(JobFailureByException):
    """Errors that may succeed on retry (network blips, DB deadlocks)."""
    def __init__(self, message: str = "Transient error", original: Optional[BaseException] = None):
        super().__init__(message, original)


class JobError(ApplicationError):
    """Job error. Must not happen in a healthy production run; fix code or configuration."""
    pass


class ParameterError(JobError):
    """User configuration error (jobnet files, job files, options)."""
    def __init__(self, message: str, location=None):
        super().__init__(message)
        self.location = location


class GraphSyntaxError(ParameterError):
    pass


class MissingSubsystemError(ParameterError):
    pass


class UndefinedSubnetError(ParameterError):
    pass


class CycleDetectedError(ParameterError):
    def __init__(self, cycle):
        self.cycle = list(cycle)
        path = " -> ".join(str(ref) for ref in self.cycle)
        super().__init__(f"found cycle in the flow: {path}")


class OrphanJobError(ParameterError):
    def __init__(self, ref):
        super().__init__(f"found orphan job in the flow: {ref.location}: {ref}", ref.location)
        self.ref = ref


class DoubleLockError(ParameterError):
    def __init__(self, help_message: str):
        super().__init__(
            "Job queue is still locked. If you are sure to restart the jobnet, " + help_message
        )
        self.help = help_message


class JobNetAborted(ApplicationError):
    """A jobnet stopped because one of its jobs did not succeed."""
    def __init__(self, jobnet_id: str, ref, result):
        super().__init__(f"jobnet {jobnet_id} aborted: cause={ref}")
        self.jobnet_id = jobnet_id
        self.ref = ref
        self.result = result
