"""Coverage session.

A :class:`CoverageSession` ties the pieces of a coverage run together: it
instruments the source loaded by the current process, writes its coverage
when it exits, and, once every process of the run has exited, aggregates
their snapshots into reports::

    session = CoverageSession()
    session.reset()
    session.wrap()
    ...  # run the code under test, possibly across many processes
    session.report()
"""
import importlib
import os
import shutil
import sys
import typing as t

from crosscov.internal.coverage.aggregator import CoverageAggregator
from crosscov.internal.coverage.cache import ContentCache
from crosscov.internal.coverage.data import CoverageMap
from crosscov.internal.coverage.exclude import TestExclude
from crosscov.internal.coverage.hooks import RunPathInterceptor
from crosscov.internal.coverage.instrumenter import create_instrumenter
from crosscov.internal.coverage.pipeline import InstrumentationPipeline
from crosscov.internal.coverage.process import ProcessInfo
from crosscov.internal.coverage.report import check_coverage
from crosscov.internal.coverage.report import print_coverage_report
from crosscov.internal.coverage.report import write_json_report
from crosscov.internal.coverage.sourcemap import SourceMapStore
from crosscov.internal.coverage.writer import ProcessCoverageWriter
from crosscov.internal.logger import get_logger
from crosscov.internal.module import ModuleInterceptor
from crosscov.settings.coverage import CWD_OVERRIDE_ENV
from crosscov.settings.coverage import CoverageConfig


log = get_logger(__name__)


class CoverageSession:
    def __init__(self, config=None):
        # type: (t.Optional[CoverageConfig]) -> None
        self.config = config if config is not None else CoverageConfig()
        self.cwd = self.config.working_dir
        self.enable_cache = self.config.enable_cache
        self.show_process_tree_enabled = self.config.show_process_tree

        self.cache = ContentCache(self.config.cache_directory, enabled=self.enable_cache)
        self.exclude = TestExclude(self.cwd, self.config.include, self.config.exclude)
        self.instrumenter = create_instrumenter(self.config.instrumenter)
        self.source_maps = SourceMapStore()
        self.pipeline = InstrumentationPipeline(
            self.cwd,
            self.exclude,
            self.instrumenter,
            self.cache,
            source_maps=self.source_maps,
            extensions=self.config.extensions,
            include_path_overrides=self.config.include_path_overrides,
            source_map=self.config.source_map,
        )
        self.process_info = ProcessInfo.current()
        self.writer = ProcessCoverageWriter(
            self.temp_directory(),
            hash_cache=self.pipeline.hash_cache,
            source_maps=self.source_maps,
            enable_cache=self.enable_cache,
            show_process_tree=self.show_process_tree_enabled,
            process_info=self.process_info,
        )
        self.aggregator = CoverageAggregator(self.temp_directory(), self.cache)

    def __repr__(self):
        return "CoverageSession(cwd=%r, cache=%r)" % (self.cwd, self.cache)

    def temp_directory(self):
        # type: () -> str
        return os.path.normpath(os.path.join(self.cwd, self.config.temp_dir))

    def process_info_directory(self):
        # type: () -> str
        return self.writer.process_info_directory

    def report_directory(self):
        # type: () -> str
        return os.path.normpath(os.path.join(self.cwd, self.config.report_dir))

    def cleanup(self):
        # type: () -> None
        # Child processes of a run share the temp directory of the parent
        if CWD_OVERRIDE_ENV not in os.environ:
            shutil.rmtree(self.temp_directory(), ignore_errors=True)

    def create_temp_directory(self):
        # type: () -> None
        os.makedirs(self.temp_directory(), exist_ok=True)
        if self.show_process_tree_enabled:
            os.makedirs(self.process_info_directory(), exist_ok=True)

    def reset(self):
        # type: () -> None
        self.cleanup()
        self.create_temp_directory()

    def clear_cache(self):
        # type: () -> None
        if self.enable_cache:
            self.cache.clear()

    def _transform(self, path, source):
        # type: (str, str) -> str
        return self.pipeline.transform(source, path)

    def wrap(self):
        # type: () -> CoverageSession
        """Instrument the code loaded from now on and write its coverage at exit."""
        self.process_info.export()

        ModuleInterceptor.install(
            self._transform, should_transform=self.pipeline.should_instrument, extensions=self.pipeline.extensions
        )
        if self.config.hook_run_path:
            RunPathInterceptor.install(self._transform, should_transform=self.pipeline.should_instrument)

        self.writer.register()

        for module in self.config.require:
            log.debug("Loading additional module %s", module)
            importlib.import_module(module)

        return self

    def unwrap(self):
        # type: () -> None
        if ModuleInterceptor.is_installed():
            ModuleInterceptor.uninstall()
        if RunPathInterceptor.is_installed():
            RunPathInterceptor.uninstall()
        self.writer.unregister()

    def add_all_files(self):
        # type: () -> t.Optional[str]
        """Record zero coverage for every instrumentable file of the working directory.

        Files are instrumented without being executed, which also fills the
        cache. Returns the path of the snapshot written for them.
        """
        coverage = CoverageMap()
        self.pipeline.discovery = True
        try:
            for filename in self.exclude.glob(self.cwd, self.pipeline.extensions):
                try:
                    self.pipeline.add_file(filename)
                except (OSError, SyntaxError, UnicodeDecodeError):
                    log.warning("Cannot read %s", filename, exc_info=True)
                    continue
                fc = self.instrumenter.last_file_coverage()
                if fc is not None and fc.path == filename:
                    coverage.add_file_coverage(fc)
        finally:
            self.pipeline.discovery = False

        return self.writer.write_snapshot(coverage)

    def instrument_all_files(self, input_path, output=None):
        # type: (str, t.Optional[str]) -> t.List[str]
        return self.pipeline.instrument_all_files(input_path, output)

    def write_coverage_file(self):
        # type: () -> t.Optional[str]
        return self.writer.write()

    def load_reports(self, filenames=None):
        # type: (t.Optional[t.Iterable[str]]) -> t.List[CoverageMap]
        return self.aggregator.load_reports(filenames)

    def get_coverage_map(self, filenames=None):
        # type: (t.Optional[t.Iterable[str]]) -> CoverageMap
        return self.aggregator.get_coverage_map(filenames)

    def report(self, file=None):
        # type: (t.Optional[t.TextIO]) -> CoverageMap
        coverage_map = self.get_coverage_map()

        for reporter in self.config.reporter:
            if reporter == "text":
                print_coverage_report(coverage_map, self.cwd, file=file)
            elif reporter == "text-summary":
                print_coverage_report(coverage_map, self.cwd, file=file, summary_only=True)
            elif reporter == "json":
                path = write_json_report(coverage_map, self.report_directory())
                log.debug("JSON report written to %s", path)
            else:
                log.warning("Unknown reporter %s", reporter)

        if self.show_process_tree_enabled:
            self.show_process_tree(file)

        return coverage_map

    def check_coverage(self, thresholds=None, file=None):
        # type: (t.Optional[t.Dict[str, float]], t.Optional[t.TextIO]) -> t.List[str]
        """Print an error for each threshold the aggregated coverage misses."""
        summary = self.get_coverage_map().summary()
        errors = check_coverage(summary, thresholds if thresholds is not None else self.config.thresholds)
        for error in errors:
            print(error, file=file if file is not None else sys.stderr)
        return errors

    def show_process_tree(self, file=None):
        # type: (t.Optional[t.TextIO]) -> None
        print(self.aggregator.render_process_tree(), file=file if file is not None else sys.stdout)
