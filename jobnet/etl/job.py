"""Job compilation.

A job reference ``subsys/name`` is compiled from the job file
``<home>/<subsys>/<name>.job``, a YAML mapping with a ``class`` key naming a
job class registered in a ``JobClassRegistry`` and the class parameters.
"""

import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from jobnet.etl.errors import JobFailure, ParameterError
from jobnet.etl.executor import run_isolated
from jobnet.etl.reference import Ref
from jobnet.etl.result import JobResult

logger = structlog.get_logger(__name__)

# A job class turns validated parameters into the job action.
JobAction = Callable[[], Any]
JobClassFactory = Callable[[Dict[str, Any]], JobAction]


class JobDefinition(BaseModel):
    """Contents of a ``.job`` file."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    job_class: str = Field(alias="class")
    description: Optional[str] = None

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class JobClassRegistry:
    """Job classes by id. Built at startup and handed to the compiler."""

    def __init__(self):
        self._classes: Dict[str, JobClassFactory] = {}

    @classmethod
    def default(cls) -> "JobClassRegistry":
        from jobnet.etl.jobclasses import register_builtin_classes

        registry = cls()
        register_builtin_classes(registry)
        return registry

    def register(self, class_id: str, factory: Optional[JobClassFactory] = None):
        if factory is None:
            def decorator(f: JobClassFactory) -> JobClassFactory:
                self._classes[class_id] = f
                return f
            return decorator
        self._classes[class_id] = factory
        return factory

    def get(self, class_id: str) -> JobClassFactory:
        try:
            return self._classes[class_id]
        except KeyError:
            raise ParameterError(f"unknown job class: {class_id}") from None

    def __contains__(self, class_id: str) -> bool:
        return class_id in self._classes

    def ids(self) -> List[str]:
        return sorted(self._classes)


class RunnableUnit:
    """A compiled job, ready to execute."""

    def __init__(self, ref: Ref, class_id: str, action: JobAction):
        self.ref = ref
        self.class_id = class_id
        self.action = action

    def __repr__(self) -> str:
        return f"<RunnableUnit {self.ref} ({self.class_id})>"

    def execute(self) -> JobResult:
        log = logger.bind(job=str(self.ref), job_class=self.class_id)
        log.info("job_started")
        start = time.monotonic()
        try:
            ret = self.action()
        except JobFailure as e:
            log.error("job_failed", error=str(e))
            result = JobResult.failure(e)
        except Exception as e:
            log.exception("job_error", error=f"{type(e).__name__}: {e}")
            result = JobResult.error(e)
        else:
            result = ret if isinstance(ret, JobResult) else JobResult.for_bool(ret is not False)
        log.info(
            "job_finished",
            status=result.status_string,
            duration_seconds=round(time.monotonic() - start, 3),
        )
        return result.for_ref(self.ref)

    def execute_isolated(self, result_path: str) -> JobResult:
        return run_isolated(self, result_path)


class JobCompiler:
    def __init__(self, home, registry: Optional[JobClassRegistry] = None):
        self.home = Path(home)
        self.registry = registry or JobClassRegistry.default()

    def job_file(self, ref: Ref) -> Path:
        return self.home / (ref.subsystem or "") / f"{ref.name}.job"

    def load_definition(self, ref: Ref) -> JobDefinition:
        path = self.job_file(ref)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ParameterError(f"no such job file: {path} (job {ref})", ref.location) from None
        except (OSError, yaml.YAMLError) as e:
            raise ParameterError(f"could not load job file: {path} ({e})", ref.location) from e
        if not isinstance(data, dict):
            raise ParameterError(f"job file must be a mapping: {path}", ref.location)
        try:
            return JobDefinition.model_validate(data)
        except ValidationError as e:
            raise ParameterError(f"bad job file: {path}: {e}", ref.location) from e

    def compile(self, ref: Ref) -> RunnableUnit:
        definition = self.load_definition(ref)
        factory = self.registry.get(definition.job_class)
        try:
            action = factory(definition.params)
        except (ValidationError, TypeError, ValueError, KeyError) as e:
            raise ParameterError(f"bad parameter for job {ref}: {e}", ref.location) from e
        return RunnableUnit(ref, definition.job_class, action)
