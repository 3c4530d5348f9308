import glob
import os
import typing as t

from crosscov.internal.coverage.cache import ContentCache
from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.data import read_coverage_file
from crosscov.internal.coverage.process import ProcessInfo
from crosscov.internal.coverage.process import ProcessNode
from crosscov.internal.coverage.process import build_process_tree
from crosscov.internal.coverage.process import read_process_info
from crosscov.internal.coverage.sourcemap import SourceMapStore
from crosscov.internal.coverage.writer import PROCESS_INFO_DIRNAME
from crosscov.internal.logger import get_logger


log = get_logger(__name__)


class CoverageAggregator:
    """Merge the coverage snapshots left by the processes of a run.

    Snapshots that cannot be parsed count as empty. Records carrying the hash
    of a cache entry are remapped through the source map stored with that
    entry, if any. The merge sums counters, so the result does not depend on
    the order in which snapshots are read.
    """

    def __init__(self, temp_directory, cache, source_maps=None):
        # type: (str, ContentCache, t.Optional[SourceMapStore]) -> None
        self.temp_directory = temp_directory
        self.cache = cache
        self.source_maps = source_maps if source_maps is not None else SourceMapStore()
        # Source maps by cache key, False when the key has no usable map
        self.loaded_maps = {}  # type: t.Dict[str, t.Union[t.Dict[str, t.Any], bool]]

    @property
    def process_info_directory(self):
        # type: () -> str
        return os.path.join(self.temp_directory, PROCESS_INFO_DIRNAME)

    def report_files(self):
        # type: () -> t.List[str]
        return sorted(glob.glob(os.path.join(glob.escape(self.temp_directory), "*.json")))

    def _register_maps(self, coverage_map):
        # type: (CoverageMap) -> None
        for path, fc in coverage_map.items():
            content_hash = fc.content_hash
            if not content_hash:
                continue
            if content_hash not in self.loaded_maps:
                source_map = self.cache.lookup_map(content_hash)
                self.loaded_maps[content_hash] = source_map if source_map is not None else False
            source_map = self.loaded_maps[content_hash]
            if source_map and not self.source_maps.register_map(path, t.cast(t.Dict[str, t.Any], source_map)):
                self.loaded_maps[content_hash] = False

    def load_report(self, filename):
        # type: (str) -> CoverageMap
        path = os.path.join(self.temp_directory, filename)
        coverage_map = read_coverage_file(path)
        self._register_maps(coverage_map)
        return self.source_maps.transform_coverage(coverage_map)

    def load_reports(self, filenames=None):
        # type: (t.Optional[t.Iterable[str]]) -> t.List[CoverageMap]
        files = list(filenames) if filenames is not None else self.report_files()
        return [self.load_report(f) for f in files]

    def get_coverage_map(self, filenames=None):
        # type: (t.Optional[t.Iterable[str]]) -> CoverageMap
        coverage_map = CoverageMap()
        for report in self.load_reports(filenames):
            coverage_map.merge(report)
        return coverage_map

    def load_process_infos(self):
        # type: () -> t.List[ProcessInfo]
        infos = []
        for path in sorted(glob.glob(os.path.join(glob.escape(self.process_info_directory), "*.json"))):
            info = read_process_info(path)
            if info is not None:
                infos.append(info)
        return infos

    def build_process_tree(self):
        # type: () -> ProcessNode
        return build_process_tree(self.load_process_infos())

    def render_process_tree(self):
        # type: () -> str
        return self.build_process_tree().render(self.load_report)
