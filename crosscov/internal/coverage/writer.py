import json
import multiprocessing.util
import os
import threading
import typing as t

from crosscov.internal import atexit
from crosscov.internal import forksafe
from crosscov.internal.coverage.collector import CoverageCollector
from crosscov.internal.coverage.collector import get_collector
from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.process import ProcessInfo
from crosscov.internal.coverage.process import generate_unique_id
from crosscov.internal.coverage.sourcemap import SourceMapStore
from crosscov.internal.logger import get_logger
from crosscov.internal.utils.fs import atomic_write


log = get_logger(__name__)


PROCESS_INFO_DIRNAME = "processinfo"


class ProcessCoverageWriter:
    """Persist the coverage of the current process when it exits.

    The snapshot is written exactly once per process, on normal exit or when
    an exit signal is received, and the process does not exit before the
    write is complete. Forked children get their own snapshot and lineage.
    """

    def __init__(
        self,
        temp_directory,  # type: str
        hash_cache=None,  # type: t.Optional[t.Dict[str, str]]
        source_maps=None,  # type: t.Optional[SourceMapStore]
        enable_cache=False,  # type: bool
        show_process_tree=False,  # type: bool
        process_info=None,  # type: t.Optional[ProcessInfo]
        collector=None,  # type: t.Optional[CoverageCollector]
    ):
        # type: (...) -> None
        self.temp_directory = temp_directory
        self.hash_cache = hash_cache if hash_cache is not None else {}
        self.source_maps = source_maps if source_maps is not None else SourceMapStore()
        self.enable_cache = enable_cache
        self.show_process_tree = show_process_tree
        self.process_info = process_info if process_info is not None else ProcessInfo.current()
        self._collector = collector

        self._lock = forksafe.Lock()
        self._written = False
        # Thread writing the snapshot, if any
        self._writing = None  # type: t.Optional[int]
        self._registered = False

    @property
    def process_info_directory(self):
        # type: () -> str
        return os.path.join(self.temp_directory, PROCESS_INFO_DIRNAME)

    @property
    def collector(self):
        # type: () -> CoverageCollector
        if self._collector is not None:
            return self._collector
        return t.cast(CoverageCollector, get_collector())

    def prepare(self, coverage):
        # type: (CoverageMap) -> CoverageMap
        """Annotate records with their cache key, or remap them right away."""
        if self.enable_cache:
            # Maps are resolved by hash when the reports are aggregated
            for path, fc in coverage.items():
                content_hash = self.hash_cache.get(path)
                if content_hash:
                    fc.content_hash = content_hash
            return coverage

        return self.source_maps.transform_coverage(coverage)

    def write(self):
        # type: () -> t.Optional[str]
        """Write the coverage snapshot of this process, at most once.

        Returns the path of the snapshot, or ``None`` if it was already
        written.
        """
        if self._writing == threading.get_ident():
            # Reentered from a signal handler while this thread is writing
            return None

        with atexit.exit_signals_deferred(), self._lock:
            if self._written:
                return None
            self._written = True

            self._writing = threading.get_ident()
            try:
                return self.write_snapshot(self.collector.coverage())
            finally:
                self._writing = None

    def write_snapshot(self, coverage):
        # type: (CoverageMap) -> str
        coverage = self.prepare(coverage)
        file_id = generate_unique_id()
        coverage_filename = os.path.join(self.temp_directory, file_id + ".json")
        atomic_write(coverage_filename, json.dumps(coverage.to_dict()))
        log.debug("Coverage of process %d written to %s", os.getpid(), coverage_filename)

        if self.show_process_tree:
            self.process_info.coverage_filename = coverage_filename
            self.write_process_info(file_id)

        return coverage_filename

    def write_process_info(self, file_id=None):
        # type: (t.Optional[str]) -> str
        path = os.path.join(self.process_info_directory, (file_id or generate_unique_id()) + ".json")
        atomic_write(path, json.dumps(self.process_info.to_dict()))
        return path

    def _on_exit(self):
        # type: () -> None
        try:
            self.write()
        except Exception:
            log.error("Failed to write the coverage of process %d", os.getpid(), exc_info=True)

    def _after_fork(self):
        # type: () -> None
        # The child starts with no hits and its own place in the lineage
        self._written = False
        self._writing = None
        self.collector.reset_counters()
        self.process_info = self.process_info.child()
        self.process_info.export()

    def _after_multiprocessing_fork(self):
        # type: () -> None
        # Forked workers leave through os._exit, skipping the atexit hooks
        if self._registered:
            multiprocessing.util.Finalize(self, self._on_exit, exitpriority=-100)

    def register(self):
        # type: () -> None
        if self._registered:
            return
        self._registered = True

        atexit.register(self._on_exit, register_signal=True)
        forksafe.register(self._after_fork)
        multiprocessing.util.register_after_fork(self, ProcessCoverageWriter._after_multiprocessing_fork)

    def unregister(self):
        # type: () -> None
        if not self._registered:
            return
        self._registered = False

        atexit.unregister(self._on_exit)
        try:
            forksafe.unregister(self._after_fork)
        except ValueError:
            pass
