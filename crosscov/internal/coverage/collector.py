"""Process-wide coverage accumulator.

Instrumented modules call :func:`register` once, when they are executed, and
get back the :class:`FileCoverage` whose counters they increment. This module
is the one registration point reachable from generated code, which imports it
by name.
"""
import typing as t

from crosscov.internal import forksafe
from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.data import FileCoverage
from crosscov.internal.logger import get_logger


log = get_logger(__name__)


class CoverageCollector:
    def __init__(self):
        # type: () -> None
        self._coverage = CoverageMap()
        self._lock = forksafe.Lock()

    def register(self, skeleton):
        # type: (t.Dict[str, t.Any]) -> FileCoverage
        """Return the live record for the file described by ``skeleton``.

        Registering the same file again, e.g. when a module is reloaded, hands
        out the existing record so that hits keep accumulating. A skeleton of
        a different shape means the file changed and replaces the record.
        """
        fc = FileCoverage.from_skeleton(skeleton)
        with self._lock:
            existing = self._coverage.file_coverage_for(fc.path)
            if existing is not None and existing.has_shape_of(fc):
                return existing
            if existing is not None:
                log.debug("Replacing coverage record of modified file %s", fc.path)
            self._coverage.set_file_coverage(fc)
        return fc

    def add(self, fc):
        # type: (FileCoverage) -> None
        """Add a record produced outside of instrumented code."""
        with self._lock:
            if fc.path not in self._coverage:
                self._coverage.set_file_coverage(fc.copy())

    def coverage(self):
        # type: () -> CoverageMap
        """A snapshot of the accumulated coverage."""
        with self._lock:
            return CoverageMap(self._coverage)

    def reset_counters(self):
        # type: () -> None
        with self._lock:
            for _, fc in self._coverage.items():
                fc.reset_counters()

    def clear(self):
        # type: () -> None
        with self._lock:
            self._coverage = CoverageMap()

    def __len__(self):
        return len(self._coverage)


_collector = None  # type: t.Optional[CoverageCollector]


def get_collector(create=True):
    # type: (bool) -> t.Optional[CoverageCollector]
    global _collector

    if _collector is None and create:
        _collector = CoverageCollector()
    return _collector


def register(skeleton):
    # type: (t.Dict[str, t.Any]) -> FileCoverage
    return t.cast(CoverageCollector, get_collector()).register(skeleton)
