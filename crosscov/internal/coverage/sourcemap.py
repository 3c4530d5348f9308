"""Source map support.

Files produced by a code generator may carry a version 3 source map, either
inline as a base64 data URL or in a companion file, referenced by a trailing
``sourceMappingURL`` comment::

    # sourceMappingURL=data:application/json;charset=utf-8;base64,eyJ2ZXJzaW9uIjozLC4uLn0=
    # sourceMappingURL=module.py.map

Coverage collected on such a file is remapped onto the original sources when
the report is built.
"""
import base64
import binascii
import bisect
import json
import os
import re
import typing as t
from urllib.parse import unquote

from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.coverage.data import location
from crosscov.internal.logger import get_logger


log = get_logger(__name__)


SOURCE_MAP_URL_RE = re.compile(r"^[ \t]*(?:#|//)[#@]?[ \t]*sourceMappingURL=(\S+)[ \t]*$", re.MULTILINE)

_BASE64_DIGITS = {c: i for i, c in enumerate("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/")}
_VLQ_CONTINUATION = 0x20
_VLQ_MASK = 0x1F

Position = t.Dict[str, t.Any]


class SourceMapError(ValueError):
    pass


def decode_vlq(segment):
    # type: (str) -> t.List[int]
    """Decode a base64 VLQ segment into its signed integer fields."""
    values = []  # type: t.List[int]
    value = shift = 0
    for char in segment:
        try:
            digit = _BASE64_DIGITS[char]
        except KeyError:
            raise SourceMapError("Invalid VLQ character %r" % char)
        value += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += 5
            continue
        values.append(-(value >> 1) if value & 1 else value >> 1)
        value = shift = 0
    if shift:
        raise SourceMapError("Truncated VLQ segment %r" % segment)
    return values


def decode_mappings(mappings):
    # type: (str) -> t.List[t.List[t.Tuple[int, ...]]]
    """Decode the ``mappings`` field of a source map.

    Returns one list of segments per generated line. Segments hold absolute
    values: generated column, and optionally source index, original line
    (0-based), original column and name index.
    """
    lines = []  # type: t.List[t.List[t.Tuple[int, ...]]]
    source = original_line = original_column = name = 0
    for line in mappings.split(";"):
        segments = []
        generated_column = 0
        for raw in line.split(","):
            if not raw:
                continue
            fields = decode_vlq(raw)
            generated_column += fields[0]
            if len(fields) == 1:
                segments.append((generated_column,))
                continue
            if len(fields) < 4:
                raise SourceMapError("Invalid segment %r" % raw)
            source += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if len(fields) > 4:
                name += fields[4]
                segments.append((generated_column, source, original_line, original_column, name))
            else:
                segments.append((generated_column, source, original_line, original_column))
        segments.sort(key=lambda s: s[0])
        lines.append(segments)
    return lines


class SourceMap:
    def __init__(self, data, filename=None):
        # type: (t.Dict[str, t.Any], t.Optional[str]) -> None
        if not isinstance(data, dict) or "mappings" not in data or "sources" not in data:
            raise SourceMapError("Not a source map")
        self.data = data
        self.filename = filename
        self.sources = [self._resolve(s, data.get("sourceRoot") or "") for s in data["sources"]]
        self.lines = decode_mappings(data["mappings"])

    def _resolve(self, source, root):
        # type: (str, str) -> str
        if source.startswith("file://"):
            source = source[len("file://") :]
        if root.startswith("file://"):
            root = root[len("file://") :]
        if root and not os.path.isabs(source):
            source = os.path.join(root, source)
        if not os.path.isabs(source) and self.filename is not None:
            source = os.path.join(os.path.dirname(self.filename), source)
        return os.path.normpath(source)

    def original_position_for(self, line, column):
        # type: (int, int) -> t.Optional[Position]
        """Map a 1-based line and 0-based column of the generated file."""
        if line < 1 or line > len(self.lines):
            return None
        segments = [s for s in self.lines[line - 1] if len(s) >= 4]
        if not segments:
            return None

        i = bisect.bisect_right([s[0] for s in segments], column) - 1
        segment = segments[max(i, 0)]
        if segment[1] >= len(self.sources):
            return None
        return {"source": self.sources[segment[1]], "line": segment[2] + 1, "column": segment[3]}

    @classmethod
    def from_json(cls, text, filename=None):
        # type: (str, t.Optional[str]) -> SourceMap
        return cls(json.loads(text), filename)


def _decode_data_url(url):
    # type: (str) -> str
    header, _, payload = url[len("data:") :].partition(",")
    if ";base64" in header:
        return base64.b64decode(payload).decode("utf-8")
    return unquote(payload)


def extract_source_map(code, filename):
    # type: (str, str) -> t.Optional[t.Dict[str, t.Any]]
    """Return the source map referenced by ``code``, if any.

    The last ``sourceMappingURL`` comment wins. A map that cannot be read or
    parsed is ignored.
    """
    urls = SOURCE_MAP_URL_RE.findall(code)
    if not urls:
        return None
    url = urls[-1]

    try:
        if url.startswith("data:"):
            text = _decode_data_url(url)
        else:
            map_path = os.path.join(os.path.dirname(filename), unquote(url))
            with open(map_path, "r", encoding="utf-8") as f:
                text = f.read()
        data = json.loads(text)
        SourceMap(data, filename)
    except (OSError, ValueError, UnicodeDecodeError, binascii.Error, TypeError):
        log.debug("Ignoring unusable source map %s of %s", url[:64], filename, exc_info=True)
        return None

    return data


def _map_location(source_map, loc):
    # type: (SourceMap, t.Dict[str, t.Dict[str, int]]) -> t.Optional[t.Tuple[str, t.Dict[str, t.Dict[str, int]]]]
    start = source_map.original_position_for(loc["start"]["line"], loc["start"]["column"])
    if start is None:
        return None
    end = source_map.original_position_for(loc["end"]["line"], loc["end"]["column"])
    if end is None or end["source"] != start["source"]:
        end = start
    return start["source"], location(start["line"], start["column"], end["line"], end["column"])


class _RemappedFile:
    def __init__(self, path):
        # type: (str) -> None
        self.fc = FileCoverage(path=path)
        self._statements = {}  # type: t.Dict[str, int]
        self._functions = {}  # type: t.Dict[str, int]
        self._branches = {}  # type: t.Dict[str, int]

    @staticmethod
    def _key(value):
        # type: (t.Any) -> str
        return json.dumps(value, sort_keys=True)

    def add_statement(self, loc, hits):
        key = self._key(loc)
        if key in self._statements:
            self.fc.s[self._statements[key]] += hits
            return
        self._statements[key] = len(self.fc.s)
        self.fc.statement_map.append(loc)
        self.fc.s.append(hits)

    def add_function(self, fn, hits):
        key = self._key(fn["loc"])
        if key in self._functions:
            self.fc.f[self._functions[key]] += hits
            return
        self._functions[key] = len(self.fc.f)
        self.fc.fn_map.append(fn)
        self.fc.f.append(hits)

    def add_branch(self, branch, hits):
        key = self._key(branch["locations"])
        if key in self._branches:
            arms = self.fc.b[self._branches[key]]
            for i, n in enumerate(hits):
                arms[i] += n
            return
        self._branches[key] = len(self.fc.b)
        self.fc.branch_map.append(branch)
        self.fc.b.append(list(hits))


def remap_file_coverage(fc, source_map):
    # type: (FileCoverage, SourceMap) -> t.List[FileCoverage]
    """Translate a record of a generated file onto its original sources.

    Counters whose location cannot be mapped are dropped. Counters mapping to
    the same original location are summed.
    """
    files = {}  # type: t.Dict[str, _RemappedFile]

    def remapped(path):
        # type: (str) -> _RemappedFile
        if path not in files:
            files[path] = _RemappedFile(path)
        return files[path]

    for loc, hits in zip(fc.statement_map, fc.s):
        mapped = _map_location(source_map, loc)
        if mapped is not None:
            remapped(mapped[0]).add_statement(mapped[1], hits)

    for fn, hits in zip(fc.fn_map, fc.f):
        mapped_loc = _map_location(source_map, fn["loc"])
        if mapped_loc is None:
            continue
        mapped_decl = _map_location(source_map, fn["decl"])
        decl = mapped_decl[1] if mapped_decl is not None and mapped_decl[0] == mapped_loc[0] else mapped_loc[1]
        remapped(mapped_loc[0]).add_function(
            {"name": fn["name"], "decl": decl, "loc": mapped_loc[1], "line": mapped_loc[1]["start"]["line"]}, hits
        )

    for branch, hits in zip(fc.branch_map, fc.b):
        mapped_loc = _map_location(source_map, branch["loc"])
        if mapped_loc is None:
            continue
        arms = [_map_location(source_map, arm) for arm in branch["locations"]]
        # A branch is only meaningful with all of its arms
        if any(arm is None or arm[0] != mapped_loc[0] for arm in arms):
            continue
        remapped(mapped_loc[0]).add_branch(
            {
                "type": branch.get("type", "if"),
                "line": mapped_loc[1]["start"]["line"],
                "loc": mapped_loc[1],
                "locations": [arm[1] for arm in arms if arm is not None],
            },
            hits,
        )

    return [files[path].fc for path in sorted(files)]


class SourceMapStore:
    """Source maps of the files whose coverage needs remapping, by absolute path."""

    def __init__(self):
        # type: () -> None
        self._maps = {}  # type: t.Dict[str, SourceMap]

    def __contains__(self, path):
        return path in self._maps

    def __len__(self):
        return len(self._maps)

    def register_map(self, path, source_map):
        # type: (str, t.Union[SourceMap, t.Dict[str, t.Any]]) -> bool
        """Register the map of ``path``. An unusable map is ignored."""
        if not isinstance(source_map, SourceMap):
            try:
                source_map = SourceMap(source_map, path)
            except (SourceMapError, ValueError, TypeError, KeyError, AttributeError):
                log.debug("Ignoring malformed source map of %s", path, exc_info=True)
                return False
        self._maps[path] = source_map
        return True

    def transform_coverage(self, coverage_map):
        # type: (CoverageMap) -> CoverageMap
        """Remap the records that have a source map, keep the others."""
        transformed = CoverageMap()
        for path, fc in sorted(coverage_map.items()):
            source_map = self._maps.get(path)
            if source_map is None:
                transformed.add_file_coverage(fc)
                continue
            for remapped in remap_file_coverage(fc, source_map):
                transformed.add_file_coverage(remapped)
        return transformed
