import importlib.util
import os
from pathlib import Path
import sys
import typing as t

from crosscov.internal.coverage.cache import ContentCache
from crosscov.internal.coverage.cache import cache_key
from crosscov.internal.coverage.cache import cache_salt
from crosscov.internal.coverage.exclude import TestExclude
from crosscov.internal.coverage.instrumenter import STUB
from crosscov.internal.coverage.instrumenter import Instrumenter
from crosscov.internal.coverage.sourcemap import SourceMapStore
from crosscov.internal.coverage.sourcemap import extract_source_map
from crosscov.internal.logger import get_logger
from crosscov.internal.utils.fs import atomic_write


log = get_logger(__name__)

# Never instrument ourselves
_CROSSCOV_DIR = str(Path(__file__).resolve().parent.parent.parent)


class FileUnit:
    """A source file considered for instrumentation."""

    __slots__ = ("filename", "rel_file", "ext", "source", "instrument", "content")

    def __init__(self, filename, rel_file, ext, source, instrument, content):
        # type: (str, str, str, str, bool, str) -> None
        self.filename = filename
        self.rel_file = rel_file
        self.ext = ext
        self.source = source
        self.instrument = instrument
        self.content = content

    def __repr__(self):
        return "FileUnit(filename=%r, instrument=%r)" % (self.filename, self.instrument)


def read_source(filename):
    # type: (str) -> str
    """Read a source file, honouring its encoding declaration."""
    with open(filename, "rb") as f:
        return importlib.util.decode_source(f.read())


def is_valid_source(source, filename):
    # type: (str, str) -> bool
    try:
        compile(source, filename, "exec", dont_inherit=True)
    except (SyntaxError, ValueError):
        return False
    return True


class InstrumentationPipeline:
    """Turn the source of a file into the source that actually runs.

    Excluded files and files with an unregistered extension pass through
    unchanged. Included files are instrumented, through the content cache
    when it is enabled. Instrumentation failures are logged and the original
    source is returned instead.
    """

    def __init__(
        self,
        cwd,  # type: str
        exclude,  # type: TestExclude
        instrumenter,  # type: Instrumenter
        cache,  # type: ContentCache
        source_maps=None,  # type: t.Optional[SourceMapStore]
        extensions=(".py",),  # type: t.Iterable[str]
        include_path_overrides=(),  # type: t.Iterable[str]
        source_map=True,  # type: bool
        salt=None,  # type: t.Optional[str]
    ):
        # type: (...) -> None
        self.cwd = os.path.abspath(cwd)
        self.exclude = exclude
        self.instrumenter = instrumenter
        self.cache = cache
        self.source_maps = source_maps if source_maps is not None else SourceMapStore()
        self.extensions = [e.lower() for e in extensions]
        self.include_path_overrides = [p for p in include_path_overrides if p]
        self.source_map = source_map
        self.salt = salt if salt is not None else cache_salt(instrumenter)

        # Cache key of every file instrumented with the cache enabled
        self.hash_cache = {}  # type: t.Dict[str, str]
        # Set while enumerating files that are not going to be executed
        self.discovery = False

    def relative_path(self, filename):
        # type: (str) -> str
        return os.path.relpath(filename, self.cwd).replace(os.sep, "/")

    def has_extension(self, filename):
        # type: (str) -> bool
        return os.path.splitext(filename)[1].lower() in self.extensions

    def should_instrument(self, filename, rel_file=None):
        # type: (str, t.Optional[str]) -> bool
        if not self.has_extension(filename):
            return False
        if filename.startswith(_CROSSCOV_DIR + os.sep):
            return False
        if any(override in filename for override in self.include_path_overrides):
            return True
        return self.exclude.should_instrument(filename, rel_file)

    def transform(self, code, filename, rel_file=None):
        # type: (str, str, t.Optional[str]) -> str
        if not self.should_instrument(filename, rel_file):
            return code

        ext = os.path.splitext(filename)[1].lower()
        key = None
        corrupt = False
        if self.cache.enabled:
            key = cache_key(code, filename, self.salt)
            self.hash_cache[filename] = key
            if not self.discovery:
                cached = self.cache.lookup(key, ext)
                if cached is not None:
                    if is_valid_source(cached, filename):
                        log.debug("Using cached instrumentation of %s", filename)
                        return cached
                    log.warning("Ignoring corrupt cached instrumentation of %s", filename)
                    corrupt = True

        source_map = extract_source_map(code, filename) if self.source_map else None

        try:
            instrumented = self.instrumenter.instrument(code, filename, source_map)
        except Exception as e:
            log.warning("Failed to instrument %s: %s", filename, e)
            self.hash_cache.pop(filename, None)
            return code

        if source_map is not None:
            if key is not None:
                self.cache.store_map(key, source_map)
            else:
                self.source_maps.register_map(filename, source_map)

        if key is not None:
            self.cache.store(key, ext, instrumented, replace=corrupt)

        return STUB if self.discovery else instrumented

    def add_file(self, filename):
        # type: (str) -> FileUnit
        filename = os.path.abspath(filename)
        rel_file = self.relative_path(filename)
        source = read_source(filename)
        instrument = self.should_instrument(filename, rel_file)
        content = self.transform(source, filename, rel_file) if instrument else source
        return FileUnit(filename, rel_file, os.path.splitext(filename)[1].lower(), source, instrument, content)

    def instrument_all_files(self, input_path, output=None):
        # type: (str, t.Optional[str]) -> t.List[str]
        """Write the instrumented version of a file or of a directory tree.

        Without ``output`` the instrumented source of a single file goes to
        stdout. Files that are not instrumented are copied unchanged. Returns
        the written paths.
        """
        input_path = os.path.abspath(input_path)

        if os.path.isfile(input_path):
            unit = self.add_file(input_path)
            if output is None:
                sys.stdout.write(unit.content)
                return []
            if os.path.isdir(output):
                output = os.path.join(output, os.path.basename(input_path))
            atomic_write(output, unit.content)
            return [output]

        if output is None:
            raise ValueError("An output directory is needed to instrument the directory %s" % input_path)

        output = os.path.abspath(output)
        written = []
        for dirpath, dirnames, filenames in os.walk(input_path):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and os.path.join(dirpath, d) != output)
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if not self.has_extension(path):
                    continue
                destination = os.path.join(output, os.path.relpath(path, input_path))
                atomic_write(destination, self.add_file(path).content)
                written.append(destination)
        return written
