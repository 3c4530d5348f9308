"""Process lineage.

Every process of a run knows the id of the process that started it and the id
of the process at the root of the run, both inherited through the
environment. Each process records this information next to its coverage
snapshot, which is enough to rebuild the whole tree of processes once they
have all exited.
"""
import hashlib
import json
import os
import sys
import time
import typing as t

from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.report import summarize
from crosscov.internal.logger import get_logger


log = get_logger(__name__)


ROOT_ID_ENV = "_CROSSCOV_ROOT_ID"
PARENT_ID_ENV = "_CROSSCOV_PARENT_ID"


def generate_unique_id():
    # type: () -> str
    """An id for the current process, unique among concurrent processes.

    Two processes with the same pid getting the same high resolution
    timestamps are not guarded against.
    """
    h = hashlib.md5()  # nosec: not used for security
    for part in (time.perf_counter_ns(), time.time_ns(), os.getpid()):
        h.update(str(part).encode())
    return h.hexdigest()


def _interpreter_options():
    # type: () -> t.List[str]
    orig_argv = getattr(sys, "orig_argv", None)
    if not orig_argv or len(orig_argv) <= len(sys.argv):
        return []
    return list(orig_argv[1 : len(orig_argv) - len(sys.argv)])


class ProcessInfo:
    __slots__ = ("id", "parent_id", "root_id", "pid", "ppid", "argv", "exec_argv", "cwd", "time", "coverage_filename")

    def __init__(
        self,
        id,  # type: str
        parent_id=None,  # type: t.Optional[str]
        root_id=None,  # type: t.Optional[str]
        pid=None,  # type: t.Optional[int]
        ppid=None,  # type: t.Optional[int]
        argv=None,  # type: t.Optional[t.List[str]]
        exec_argv=None,  # type: t.Optional[t.List[str]]
        cwd=None,  # type: t.Optional[str]
        time=None,  # type: t.Optional[float]
        coverage_filename=None,  # type: t.Optional[str]
    ):
        # type: (...) -> None
        self.id = id
        self.parent_id = parent_id
        self.root_id = root_id or id
        self.pid = pid
        self.ppid = ppid
        self.argv = list(argv or [])
        self.exec_argv = list(exec_argv or [])
        self.cwd = cwd
        self.time = time
        self.coverage_filename = coverage_filename

    def __repr__(self):
        return "ProcessInfo(id=%r, parent_id=%r, root_id=%r, pid=%r)" % (self.id, self.parent_id, self.root_id, self.pid)

    def __eq__(self, other):
        if not isinstance(other, ProcessInfo):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    @classmethod
    def current(cls, environ=None):
        # type: (t.Optional[t.Mapping[str, str]]) -> ProcessInfo
        """Describe the running process, within the lineage found in ``environ``."""
        environ = os.environ if environ is None else environ
        return cls(
            id=generate_unique_id(),
            parent_id=environ.get(PARENT_ID_ENV) or None,
            root_id=environ.get(ROOT_ID_ENV) or None,
            pid=os.getpid(),
            ppid=os.getppid(),
            argv=[sys.executable] + sys.argv,
            exec_argv=_interpreter_options(),
            cwd=os.getcwd(),
            time=time.time(),
        )

    def child(self):
        # type: () -> ProcessInfo
        """Describe a process forked from this one."""
        return ProcessInfo(
            id=generate_unique_id(),
            parent_id=self.id,
            root_id=self.root_id,
            pid=os.getpid(),
            ppid=os.getppid(),
            argv=self.argv,
            exec_argv=self.exec_argv,
            cwd=os.getcwd(),
            time=time.time(),
        )

    def export(self, environ=None):
        # type: (t.Optional[t.MutableMapping[str, str]]) -> None
        """Make this process the parent of the processes it starts."""
        environ = os.environ if environ is None else environ
        environ[ROOT_ID_ENV] = self.root_id
        environ[PARENT_ID_ENV] = self.id

    def to_dict(self):
        # type: () -> t.Dict[str, t.Any]
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "rootId": self.root_id,
            "pid": self.pid,
            "ppid": self.ppid,
            "argv": self.argv,
            "execArgv": self.exec_argv,
            "cwd": self.cwd,
            "time": self.time,
            "coverageFilename": self.coverage_filename,
        }

    @classmethod
    def from_dict(cls, data):
        # type: (t.Dict[str, t.Any]) -> ProcessInfo
        if not isinstance(data, dict) or not isinstance(data.get("id"), str) or not data["id"]:
            raise ValueError("Not a process info record")
        argv = data.get("argv") or []
        if not isinstance(argv, list):
            raise ValueError("Invalid argv in process info %s" % data["id"])
        return cls(
            id=data["id"],
            parent_id=data.get("parentId") or None,
            root_id=data.get("rootId") or None,
            pid=data.get("pid"),
            ppid=data.get("ppid"),
            argv=[str(a) for a in argv],
            exec_argv=[str(a) for a in data.get("execArgv") or []],
            cwd=data.get("cwd"),
            time=data.get("time"),
            coverage_filename=data.get("coverageFilename"),
        )


def read_process_info(path):
    # type: (str) -> t.Optional[ProcessInfo]
    """Read a process info record, ``None`` if it is corrupt."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return ProcessInfo.from_dict(json.load(f))
    except (OSError, ValueError, UnicodeDecodeError, TypeError):
        log.debug("Ignoring corrupt process info %s", path, exc_info=True)
        return None


class ProcessNode:
    def __init__(self, info=None):
        # type: (t.Optional[ProcessInfo]) -> None
        self.info = info
        self.children = []  # type: t.List[ProcessNode]

    def __repr__(self):
        return "ProcessNode(%r, children=%d)" % (self.info, len(self.children))

    def walk(self):
        # type: () -> t.Iterator[ProcessNode]
        yield self
        for child in self.children:
            yield from child.walk()

    def coverage_map(self, load):
        # type: (t.Callable[[str], CoverageMap]) -> CoverageMap
        """The coverage of this process merged with that of its descendants."""
        coverage_map = CoverageMap()
        for node in self.walk():
            if node.info is not None and node.info.coverage_filename:
                coverage_map.merge(load(node.info.coverage_filename))
        return coverage_map

    def label(self, load):
        # type: (t.Callable[[str], CoverageMap]) -> str
        if self.info is None:
            return "crosscov"
        pct = summarize(self.coverage_map(load)).lines.pct
        return "%s\n%s %% Lines" % (" ".join(self.info.argv), ("%.2f" % pct).rstrip("0").rstrip("."))

    def render(self, load, prefix=""):
        # type: (t.Callable[[str], CoverageMap], str) -> str
        """Render the tree the way ``archy`` does."""
        lines = self.label(load).split("\n")
        splitter = "\n" + prefix + ("│" if self.children else " ") + " "
        out = prefix + splitter.join(lines) + "\n"
        for i, child in enumerate(self.children):
            last = i == len(self.children) - 1
            child_prefix = prefix + (" " if last else "│") + " "
            out += (
                prefix
                + ("└" if last else "├")
                + "─"
                + ("┬" if child.children else "─")
                + " "
                + child.render(load, child_prefix)[len(prefix) + 2 :]
            )
        return out


def build_process_tree(infos):
    # type: (t.Iterable[t.Optional[ProcessInfo]]) -> ProcessNode
    """Arrange process info records into a tree under a synthetic root.

    Processes without a parent hang from the root. A process whose parent
    left no record is kept under the root when it belongs to the run of a
    known root process, and dropped otherwise. ``None`` entries, standing for
    corrupt records, are dropped.
    """
    infos = sorted((i for i in infos if i is not None), key=lambda i: (i.time or 0, i.id))
    nodes = {info.id: ProcessNode(info) for info in infos}
    roots = {info.root_id for info in infos if info.parent_id is None}

    tree = ProcessNode()
    for info in infos:
        node = nodes[info.id]
        if info.parent_id is None:
            tree.children.append(node)
        elif info.parent_id in nodes and info.parent_id != info.id:
            nodes[info.parent_id].children.append(node)
        elif info.root_id in roots:
            tree.children.append(node)
        else:
            log.debug("Dropping orphaned process info %s", info.id)
    return tree
