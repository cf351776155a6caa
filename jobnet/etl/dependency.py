"""Jobnet dependency graph.

A jobnet file is parsed into a ``JobFlow`` (its local edges). Sub-jobnet
references (``*subsys/name``) are resolved recursively into further flows,
all flows are closed with synthetic ``@net@start`` / ``@net@end`` nodes, and
merged into one ``DependencyGraph`` which is validated (no cycle, no orphan)
and yields the execution order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

import networkx as nx
import structlog

from jobnet.etl.errors import (
    CycleDetectedError,
    OrphanJobError,
    ParameterError,
    UndefinedSubnetError,
)
from jobnet.etl.parser import Parser
from jobnet.etl.reference import JobNetRef, Location, Ref

logger = structlog.get_logger(__name__)


class JobFlow:
    """Local edges of one jobnet."""

    def __init__(self, ref: JobNetRef, location: Optional[Location] = None):
        self.ref = ref
        self.location = location or ref.location
        self._flow: Dict[Ref, List[Ref]] = {}   # src -> [dest]
        self._deps: Dict[Ref, List[Ref]] = {}   # dest -> [src]
        self._nodes: Dict[Ref, None] = {}       # edge endpoints, insertion ordered
        self._declared: Dict[Ref, None] = {}
        self._closed = False

    @classmethod
    def parse(cls, ref: JobNetRef, lines: Iterable[str], path: Optional[str] = None) -> "JobFlow":
        parser = Parser(ref, path)
        flow = cls(ref, Location(parser.path, 0))
        for src, dest in parser.each_edge(lines):
            flow.add_edge(src, dest)
        return flow

    @classmethod
    def from_mapping(cls, ref: JobNetRef, mapping: Mapping[str, Sequence[str]]) -> "JobFlow":
        """Build a flow from ``{dest: [src, ...]}`` declarations.

        An entry with no sources only declares the node.
        """
        flow = cls(ref)
        for dest_name, src_names in mapping.items():
            dest = Ref.parse(dest_name, ref.subsystem)
            if not src_names:
                flow.add_node(dest)
                continue
            for src_name in src_names:
                flow.add_edge(Ref.parse(src_name, ref.subsystem), dest)
        return flow

    def __repr__(self) -> str:
        return f"<JobFlow {self.ref}>"

    @property
    def start(self) -> Ref:
        return self.ref.start_ref

    @property
    def end(self) -> Ref:
        return self.ref.end_ref

    @property
    def closed(self) -> bool:
        return self._closed

    def add_edge(self, src: Ref, dest: Ref) -> None:
        if self._closed:
            raise RuntimeError(f"jobnet {self.ref} is already closed")
        dests = self._flow.setdefault(src, [])
        if dest not in dests:
            dests.append(dest)
        srcs = self._deps.setdefault(dest, [])
        if src not in srcs:
            srcs.append(src)
        self._nodes.setdefault(src)
        self._nodes.setdefault(dest)

    def add_node(self, ref: Ref) -> None:
        self._declared.setdefault(ref)

    def nodes(self) -> List[Ref]:
        nodes = dict(self._nodes)
        nodes.update(self._declared)
        return list(nodes)

    def net_refs(self) -> List[JobNetRef]:
        return [ref for ref in self.nodes() if ref.is_net]

    def downstream(self) -> Dict[Ref, List[Ref]]:
        return {src: list(dests) for src, dests in self._flow.items()}

    def upstream(self) -> Dict[Ref, List[Ref]]:
        return {dest: list(srcs) for dest, srcs in self._deps.items()}

    def close(self) -> None:
        """Connect unbound nodes to this jobnet's start and end."""
        if self._closed:
            return
        if not self._nodes:
            self.add_edge(self.start, self.end)
        for ref in list(self._nodes):
            if ref.dummy:
                continue
            if ref not in self._deps:
                self.add_edge(self.start, ref)
            if ref not in self._flow:
                self.add_edge(ref, self.end)
        # declared-only nodes stay unconnected; validation reports them
        for ref in self._declared:
            if ref not in self._nodes:
                self._deps.setdefault(ref, [])
        self._closed = True

    def each_dependencies(self) -> Iterator[Tuple[Ref, List[Ref]]]:
        """Yield (dest, srcs) with jobnet refs replaced by their inner start/end."""
        for ref, srcs in self._deps.items():
            dest = ref.start_ref if ref.is_net else ref
            yield dest, [src.end_ref if src.is_net else src for src in srcs]


def _visible_path(path: List[Ref]) -> List[Ref]:
    """Replace start/end markers by their jobnet, folding repeats of the same node."""
    visible: List[Ref] = []
    for ref in path:
        ref = ref.visible_ref
        if not visible or visible[-1] != ref:
            visible.append(ref)
    return visible


class DependencyGraph:
    """Merged dependencies of all flows of a root jobnet."""

    def __init__(self, start: Ref):
        self.start = start
        self._deps: Dict[Ref, List[Ref]] = {}
        self._graph: Optional[nx.DiGraph] = None

    @classmethod
    def build(cls, flows: Iterable[JobFlow], start: Ref) -> "DependencyGraph":
        graph = cls(start)
        for flow in flows:
            graph.merge(flow)
        graph.fix()
        return graph

    def merge(self, flow: JobFlow) -> None:
        for dest, srcs in flow.each_dependencies():
            existing = self._deps.setdefault(dest, [])
            for src in srcs:
                if src not in existing:
                    existing.append(src)
        self._deps.setdefault(flow.start, [])

    @property
    def dependencies(self) -> Dict[Ref, List[Ref]]:
        return {dest: list(srcs) for dest, srcs in self._deps.items()}

    def fix(self) -> None:
        graph = nx.DiGraph()
        graph.add_nodes_from(self._deps)
        for dest, srcs in self._deps.items():
            for src in srcs:
                graph.add_edge(src, dest)
        self._graph = graph
        self._check_cycle()
        self._check_orphan()

    def _check_cycle(self) -> None:
        order = {ref: i for i, ref in enumerate(self._graph.nodes)}
        components = [c for c in nx.strongly_connected_components(self._graph) if len(c) > 1]
        components.sort(key=lambda c: min(order[ref] for ref in c))
        for component in components:
            first = min(component, key=order.__getitem__)
            edges = nx.find_cycle(self._graph.subgraph(component), source=first)
            raise CycleDetectedError(_visible_path([src for src, _ in edges] + [edges[0][0]]))
        for ref, _ in nx.selfloop_edges(self._graph):
            raise CycleDetectedError([ref, ref])

    def _check_orphan(self) -> None:
        for ref, srcs in self._deps.items():
            if srcs or ref.dummy or ref.is_net or ref == self.start:
                continue
            raise OrphanJobError(ref)

    def sequential_jobs(self) -> List[Ref]:
        return [ref for ref in nx.topological_sort(self._graph) if not ref.dummy]

    def topological_batches(self) -> List[List[Ref]]:
        """Jobs grouped level by level; each batch may run in parallel."""
        batches = []
        for generation in nx.topological_generations(self._graph):
            batch = [ref for ref in generation if not ref.dummy]
            if batch:
                batches.append(batch)
        return batches

    def job_dependencies(self) -> Dict[Ref, Set[Ref]]:
        """Nearest non-dummy predecessors of every job."""
        effective: Dict[Ref, Set[Ref]] = {}
        for ref in nx.topological_sort(self._graph):
            upstream: Set[Ref] = set()
            for src in self._graph.predecessors(ref):
                if src.dummy:
                    upstream |= effective[src]
                else:
                    upstream.add(src)
            effective[ref] = upstream
        return {ref: deps for ref, deps in effective.items() if not ref.dummy}


class FileLoader:
    """Loads sub-jobnets from ``<home>/<subsystem>/<name>.jobnet``."""

    def __init__(self, home):
        self.home = Path(home)

    def load(self, ref: JobNetRef) -> JobFlow:
        path = self.home / ref.relative_path
        if not path.is_file():
            raise UndefinedSubnetError(f"undefined subnet: {ref.location}: {ref}", ref.location)
        return self.load_file(path, ref)

    @staticmethod
    def load_file(path: Path, ref: JobNetRef) -> JobFlow:
        try:
            with open(path, encoding="utf-8") as f:
                return JobFlow.parse(ref, f, str(path))
        except OSError as e:
            raise ParameterError(f"could not load jobnet: {path} ({e})") from e


class RootJobNet:
    """The jobnet given on the command line, with all of its sub-jobnets.

    Loaded flows are kept in an arena keyed by the canonical reference
    string, so references never point at their flows directly.
    """

    def __init__(self, loader, start_flow: JobFlow):
        self._loader = loader
        self.start_flow = start_flow
        self._flows: Dict[str, JobFlow] = {str(start_flow.ref): start_flow}
        self._graph: Optional[DependencyGraph] = None

    @classmethod
    def load(cls, path, loader=None) -> "RootJobNet":
        path = Path(path)
        ref = JobNetRef.for_path(path)
        flow = FileLoader.load_file(path, ref)
        return cls.from_flow(flow, loader or FileLoader(path.parent.parent))

    @classmethod
    def parse(cls, text: str, subsystem: Optional[str] = None, name: str = "main", loader=None) -> "RootJobNet":
        ref = JobNetRef(subsystem, name, Location(f"<{name}>", 0))
        return cls.from_flow(JobFlow.parse(ref, text.splitlines(), f"<{name}>"), loader)

    @classmethod
    def from_flow(cls, flow: JobFlow, loader=None) -> "RootJobNet":
        root = cls(loader, flow)
        root.load_recursive()
        root.fix()
        return root

    @property
    def ref(self) -> JobNetRef:
        return self.start_flow.ref

    @property
    def id(self) -> str:
        return self.ref.id

    @property
    def graph(self) -> DependencyGraph:
        if self._graph is None:
            raise RuntimeError(f"jobnet {self.ref} is not fixed yet")
        return self._graph

    def flows(self) -> List[JobFlow]:
        return list(self._flows.values())

    def flow(self, ref: JobNetRef) -> JobFlow:
        return self._flows[str(ref)]

    def resolve(self, ref: JobNetRef) -> JobFlow:
        key = str(ref)
        if key in self._flows:
            return self._flows[key]
        if self._loader is None:
            raise UndefinedSubnetError(f"undefined subnet: {ref.location}: {ref}", ref.location)
        flow = self._loader.load(ref)
        self._flows[key] = flow
        logger.debug("subnet_loaded", jobnet=str(self.ref), subnet=key)
        return flow

    def load_recursive(self) -> None:
        unresolved = [self.start_flow]
        while unresolved:
            loaded = []
            for flow in unresolved:
                for ref in flow.net_refs():
                    if str(ref) in self._flows:
                        continue
                    loaded.append(self.resolve(ref))
            unresolved = loaded

    def fix(self) -> None:
        for flow in self._flows.values():
            flow.close()
        self._graph = DependencyGraph.build(self._flows.values(), self.start_flow.start)

    def execution_order(self) -> List[Ref]:
        return self.graph.sequential_jobs()

    def topological_batches(self) -> List[List[Ref]]:
        return self.graph.topological_batches()

    def job_dependencies(self) -> Dict[Ref, Set[Ref]]:
        return self.graph.job_dependencies()


def load_jobnet(path) -> RootJobNet:
    """Build and validate the jobnet stored at ``path``."""
    jobnet = RootJobNet.load(path)
    logger.info("jobnet_loaded", jobnet=jobnet.id, flows=len(jobnet.flows()))
    return jobnet
