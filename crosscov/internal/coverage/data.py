"""Coverage records and coverage maps.

A :class:`FileCoverage` is the coverage record of one source file: the
locations of its statements, functions and branches, and one hit counter per
statement, function and branch arm. In memory the counters are plain lists so
that instrumented code can bump them with ``s[3] += 1``; on disk records use
the istanbul JSON shape, where every map is keyed by the string form of the
counter index::

    {
        "path": "/abs/path/to/module.py",
        "statementMap": {"0": {"start": {"line": 1, "column": 0}, "end": {...}}},
        "fnMap": {"0": {"name": "f", "decl": {...}, "loc": {...}, "line": 1}},
        "branchMap": {"0": {"type": "if", "line": 2, "loc": {...}, "locations": [{...}, {...}]}},
        "s": {"0": 1},
        "f": {"0": 1},
        "b": {"0": [1, 0]},
        "contentHash": "5d41402abc4b2a76b9719d911017c592_1.0.0"
    }

Lines are 1-based and columns 0-based, as in the ``ast`` module.
"""
import copy
from dataclasses import dataclass
from dataclasses import field
import json
import typing as t

from crosscov.internal.logger import get_logger


log = get_logger(__name__)


Location = t.Dict[str, t.Dict[str, int]]

MALFORMED_ERRORS = (AttributeError, KeyError, TypeError, ValueError)


def location(start_line, start_column, end_line, end_column):
    # type: (int, int, int, int) -> Location
    return {
        "start": {"line": start_line, "column": start_column},
        "end": {"line": end_line, "column": end_column},
    }


def _indexed(mapping):
    # type: (t.Any) -> t.List[t.Any]
    """Turn an istanbul ``{"0": a, "1": b}`` mapping into ``[a, b]``."""
    if isinstance(mapping, list):
        return list(mapping)
    return [v for _, v in sorted(((int(k), v) for k, v in mapping.items()), key=lambda kv: kv[0])]


def _keyed(items):
    # type: (t.List[t.Any]) -> t.Dict[str, t.Any]
    return {str(i): v for i, v in enumerate(items)}


def _check_location(loc):
    # type: (t.Any) -> Location
    for end in ("start", "end"):
        int(loc[end]["line"])
        int(loc[end]["column"])
    return loc


@dataclass
class FileCoverage:
    path: str
    statement_map: t.List[Location] = field(default_factory=list)
    fn_map: t.List[t.Dict[str, t.Any]] = field(default_factory=list)
    branch_map: t.List[t.Dict[str, t.Any]] = field(default_factory=list)
    s: t.List[int] = field(default_factory=list)
    f: t.List[int] = field(default_factory=list)
    b: t.List[t.List[int]] = field(default_factory=list)
    content_hash: t.Optional[str] = None

    @classmethod
    def from_skeleton(cls, skeleton):
        # type: (t.Dict[str, t.Any]) -> FileCoverage
        """Create a record with all counters at zero from an instrumenter skeleton.

        The skeleton has the on-disk shape without the counters.
        """
        statement_map = _indexed(skeleton.get("statementMap", {}))
        fn_map = _indexed(skeleton.get("fnMap", {}))
        branch_map = _indexed(skeleton.get("branchMap", {}))
        return cls(
            path=skeleton["path"],
            statement_map=statement_map,
            fn_map=fn_map,
            branch_map=branch_map,
            s=[0] * len(statement_map),
            f=[0] * len(fn_map),
            b=[[0] * len(branch["locations"]) for branch in branch_map],
        )

    @classmethod
    def from_dict(cls, data):
        # type: (t.Dict[str, t.Any]) -> FileCoverage
        """Parse an on-disk record.

        Raises one of ``MALFORMED_ERRORS`` when the record is malformed.
        """
        fc = cls.from_skeleton(data)
        fc.statement_map = [_check_location(loc) for loc in fc.statement_map]
        fc.s = [int(n) for n in _indexed(data.get("s", {}))]
        fc.f = [int(n) for n in _indexed(data.get("f", {}))]
        fc.b = [[int(n) for n in arms] for arms in _indexed(data.get("b", {}))]
        if len(fc.s) != len(fc.statement_map) or len(fc.f) != len(fc.fn_map) or len(fc.b) != len(fc.branch_map):
            raise ValueError("Counters do not match the maps of %s" % fc.path)
        content_hash = data.get("contentHash")
        fc.content_hash = str(content_hash) if content_hash else None
        return fc

    def to_dict(self):
        # type: () -> t.Dict[str, t.Any]
        data = {
            "path": self.path,
            "statementMap": _keyed(self.statement_map),
            "fnMap": _keyed(self.fn_map),
            "branchMap": _keyed(self.branch_map),
            "s": _keyed(self.s),
            "f": _keyed(self.f),
            "b": _keyed([list(arms) for arms in self.b]),
        }  # type: t.Dict[str, t.Any]
        if self.content_hash:
            data["contentHash"] = self.content_hash
        return data

    def skeleton(self):
        # type: () -> t.Dict[str, t.Any]
        data = self.to_dict()
        for key in ("s", "f", "b", "contentHash"):
            data.pop(key, None)
        return data

    def has_shape_of(self, other):
        # type: (FileCoverage) -> bool
        return (
            self.statement_map == other.statement_map
            and self.fn_map == other.fn_map
            and self.branch_map == other.branch_map
        )

    def copy(self):
        # type: () -> FileCoverage
        return copy.deepcopy(self)

    def reset_counters(self):
        # type: () -> None
        """Zero every counter in place.

        Instrumented modules hold a reference to this object, so the lists
        are mutated rather than replaced.
        """
        for i in range(len(self.s)):
            self.s[i] = 0
        for i in range(len(self.f)):
            self.f[i] = 0
        for arms in self.b:
            for i in range(len(arms)):
                arms[i] = 0

    def merge(self, other):
        # type: (FileCoverage) -> None
        """Add the counters of ``other`` to ours.

        Counters are matched by index. Counters that only ``other`` has are
        appended together with their locations.
        """
        for i, hits in enumerate(other.s):
            if i < len(self.s):
                self.s[i] += hits
            else:
                self.statement_map.append(copy.deepcopy(other.statement_map[i]))
                self.s.append(hits)

        for i, hits in enumerate(other.f):
            if i < len(self.f):
                self.f[i] += hits
            else:
                self.fn_map.append(copy.deepcopy(other.fn_map[i]))
                self.f.append(hits)

        for i, arms in enumerate(other.b):
            if i < len(self.b):
                mine = self.b[i]
                for j, hits in enumerate(arms):
                    if j < len(mine):
                        mine[j] += hits
                    else:
                        mine.append(hits)
            else:
                self.branch_map.append(copy.deepcopy(other.branch_map[i]))
                self.b.append(list(arms))

    def line_hits(self):
        # type: () -> t.Dict[int, int]
        """Hits per line, the most executed statement starting on a line wins."""
        lines = {}  # type: t.Dict[int, int]
        for loc, hits in zip(self.statement_map, self.s):
            line = loc["start"]["line"]
            lines[line] = max(hits, lines.get(line, 0))
        return lines


class CoverageMap:
    """Coverage records keyed by absolute file path."""

    def __init__(self, data=None):
        # type: (t.Optional[t.Union[CoverageMap, t.Dict[str, t.Any]]]) -> None
        self._files = {}  # type: t.Dict[str, FileCoverage]
        if data is not None:
            self.merge(data)

    def __contains__(self, path):
        # type: (object) -> bool
        return path in self._files

    def __len__(self):
        # type: () -> int
        return len(self._files)

    def __iter__(self):
        return iter(self._files)

    def __eq__(self, other):
        if not isinstance(other, CoverageMap):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return "CoverageMap(files=%d)" % len(self._files)

    def files(self):
        # type: () -> t.List[str]
        return sorted(self._files)

    def items(self):
        # type: () -> t.Iterator[t.Tuple[str, FileCoverage]]
        return iter(self._files.items())

    def file_coverage_for(self, path):
        # type: (str) -> t.Optional[FileCoverage]
        return self._files.get(path)

    def set_file_coverage(self, fc):
        # type: (FileCoverage) -> None
        self._files[fc.path] = fc

    def add_file_coverage(self, fc):
        # type: (FileCoverage) -> None
        """Merge a record in. The first record for a path is copied, so that
        later merges never mutate the caller's objects."""
        existing = self._files.get(fc.path)
        if existing is None:
            self._files[fc.path] = fc.copy()
        else:
            existing.merge(fc)

    def merge(self, other):
        # type: (t.Union[CoverageMap, t.Dict[str, t.Any]]) -> None
        if not isinstance(other, CoverageMap):
            other = CoverageMap.from_dict(other)
        for _, fc in sorted(other.items()):
            self.add_file_coverage(fc)

    def filter(self, predicate):
        # type: (t.Callable[[str], bool]) -> CoverageMap
        filtered = CoverageMap()
        for path, fc in self.items():
            if predicate(path):
                filtered.set_file_coverage(fc.copy())
        return filtered

    def summary(self):
        from crosscov.internal.coverage.report import summarize

        return summarize(self)

    def to_dict(self):
        # type: () -> t.Dict[str, t.Dict[str, t.Any]]
        return {path: self._files[path].to_dict() for path in sorted(self._files)}

    @classmethod
    def from_dict(cls, data):
        # type: (t.Dict[str, t.Any]) -> CoverageMap
        """Build a map from on-disk data.

        Malformed records are dropped individually, the rest of the map is
        kept. A top level that is not an object raises ``TypeError``.
        """
        if not isinstance(data, dict):
            raise TypeError("Coverage data must be an object, got %s" % type(data).__name__)

        coverage_map = cls()
        for key, record in data.items():
            try:
                fc = FileCoverage.from_dict(record)
            except MALFORMED_ERRORS:
                log.debug("Dropping malformed coverage record for %s", key, exc_info=True)
                continue
            coverage_map.add_file_coverage(fc)
        return coverage_map


def read_coverage_file(path):
    # type: (str) -> CoverageMap
    """Read a persisted coverage snapshot.

    A snapshot that cannot be read or parsed is treated as an empty report.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            return CoverageMap.from_dict(json.load(f))
    except (OSError, UnicodeDecodeError) + MALFORMED_ERRORS:
        log.debug("Treating unreadable coverage file %s as empty", path, exc_info=True)
        return CoverageMap()
