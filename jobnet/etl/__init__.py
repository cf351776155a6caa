"""Jobnet core: dependency graphs, job compilation, execution and the runner."""

from jobnet.etl.dependency import DependencyGraph, FileLoader, JobFlow, RootJobNet, load_jobnet
from jobnet.etl.errors import (
    ApplicationError,
    CycleDetectedError,
    DoubleLockError,
    GraphSyntaxError,
    JobError,
    JobFailure,
    JobNetAborted,
    MissingSubsystemError,
    OrphanJobError,
    ParameterError,
    UndefinedSubnetError,
)
from jobnet.etl.executor import ForkExecutor, InlineExecutor, ParallelExecutor
from jobnet.etl.job import JobClassRegistry, JobCompiler, RunnableUnit
from jobnet.etl.orchestrator import JobNetRunner
from jobnet.etl.reference import JobNetRef, JobRef, Location, Ref
from jobnet.etl.result import JobResult, JobStatus

__all__ = [
    "DependencyGraph",
    "FileLoader",
    "JobFlow",
    "RootJobNet",
    "load_jobnet",
    "ApplicationError",
    "CycleDetectedError",
    "DoubleLockError",
    "GraphSyntaxError",
    "JobError",
    "JobFailure",
    "JobNetAborted",
    "MissingSubsystemError",
    "OrphanJobError",
    "ParameterError",
    "UndefinedSubnetError",
    "ForkExecutor",
    "InlineExecutor",
    "ParallelExecutor",
    "JobClassRegistry",
    "JobCompiler",
    "RunnableUnit",
    "JobNetRunner",
    "JobNetRef",
    "JobRef",
    "Location",
    "Ref",
    "JobResult",
    "JobStatus",
]
