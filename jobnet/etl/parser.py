"""Parser for the jobnet text format.

Each non-empty line (after stripping ``#`` comments) is one of::

    NODE
    [NODE] -> NODE

A bare ``NODE`` continues the chain from the previous line's destination, or
from the jobnet start when it is the first line. ``-> NODE`` takes the
previous destination as its source.
"""

import re
from typing import Iterable, Iterator, Optional, Tuple

from jobnet.etl.errors import GraphSyntaxError
from jobnet.etl.reference import NAME_PATTERN, JobNetRef, Location, Ref

NODE_PATTERN = rf"\*?(?:{NAME_PATTERN}/)?{NAME_PATTERN}"
START_RE = re.compile(rf"\A({NODE_PATTERN})\Z")
DEPEND_RE = re.compile(rf"\A({NODE_PATTERN})?\s*->\s*({NODE_PATTERN})\Z")
COMMENT_RE = re.compile(r"#.*")


class Parser:
    def __init__(self, jobnet_ref: JobNetRef, path: Optional[str] = None):
        self.jobnet_ref = jobnet_ref
        self.path = path or str(jobnet_ref)

    def each_edge(self, lines: Iterable[str]) -> Iterator[Tuple[Ref, Ref]]:
        prev_dest: Optional[Ref] = None
        for lineno, line in enumerate(lines, 1):
            text = COMMENT_RE.sub("", line).strip()
            if not text:
                continue
            loc = Location(self.path, lineno)

            m = DEPEND_RE.match(text)
            if m:
                if m.group(1):
                    src = self._ref(m.group(1), loc)
                elif prev_dest is not None:
                    src = prev_dest
                else:
                    raise GraphSyntaxError(f"syntax error at {loc}: '->' must follow any job", loc)
                dest = self._ref(m.group(2), loc)
                yield src, dest
                prev_dest = dest
                continue

            m = START_RE.match(text)
            if m:
                dest = self._ref(m.group(1), loc)
                yield (prev_dest if prev_dest is not None else self.jobnet_ref.start_ref), dest
                prev_dest = dest
                continue

            raise GraphSyntaxError(f"syntax error at {loc}: {line.strip()!r}", loc)

    def _ref(self, text: str, loc: Location) -> Ref:
        return Ref.parse(text, self.jobnet_ref.subsystem, loc)
