"""Job and jobnet references.

A reference is an immutable identifier for a job (``subsys/name``) or a
jobnet (``*subsys/name``). Equality and hashing use the canonical string
form only; the source location is carried for diagnostics.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from jobnet.etl.errors import MissingSubsystemError, ParameterError

NAME_PATTERN = r"\w[\w\-]*"

# dummy names (@net@start, @net@end) are accepted here so that serialized
# queues round-trip; the jobnet parser never produces them from user text.
_REF_RE = re.compile(rf"\A(\*)?(?:({NAME_PATTERN})/)?(@?{NAME_PATTERN}(?:@\w+)?)\Z")


@dataclass(frozen=True)
class Location:
    file: str
    lineno: int

    @classmethod
    def dummy(cls) -> "Location":
        return cls("(dummy)", 0)

    def __str__(self) -> str:
        return f"{self.file}:{self.lineno}"


@dataclass(frozen=True, eq=False)
class Ref:
    subsystem: Optional[str]
    name: str
    location: Location = field(default_factory=Location.dummy, repr=False)

    is_net = False

    @staticmethod
    def parse(text: str, subsystem: Optional[str] = None, location: Optional[Location] = None) -> "Ref":
        m = _REF_RE.match(text.strip())
        if not m:
            raise ParameterError(f"bad job name: {text!r}", location)
        is_net, subsys, name = m.groups()
        node_subsys = subsys or subsystem
        if not node_subsys:
            raise MissingSubsystemError(f"missing subsystem: {text}", location)
        ref_class = JobNetRef if is_net else JobRef
        return ref_class(node_subsys, name, location or Location.dummy())

    def __str__(self) -> str:
        if self.subsystem:
            return f"{self.subsystem}/{self.name}"
        return self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Ref):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    @property
    def dummy(self) -> bool:
        return self.name.startswith("@")

    @property
    def visible_ref(self) -> "Ref":
        """The ``*subsys/net`` a start/end marker belongs to; other refs return themselves."""
        if not self.dummy:
            return self
        net_name = self.name[1:].rsplit("@", 1)[0]
        return JobNetRef(self.subsystem, net_name, self.location)


class JobRef(Ref):
    pass


class JobNetRef(Ref):
    is_net = True

    @classmethod
    def for_path(cls, path) -> "JobNetRef":
        """Root reference for a jobnet file: ``<subsystem>/<name>.jobnet``."""
        return cls(path.parent.name, path.stem, Location(str(path), 0))

    def __str__(self) -> str:
        return "*" + super().__str__()

    @property
    def id(self) -> str:
        return super().__str__()

    @property
    def relative_path(self) -> str:
        return f"{self.subsystem}/{self.name}.jobnet"

    @property
    def start_ref(self) -> JobRef:
        return JobRef(self.subsystem, f"@{self.name}@start", self.location)

    @property
    def end_ref(self) -> JobRef:
        return JobRef(self.subsystem, f"@{self.name}@end", self.location)
