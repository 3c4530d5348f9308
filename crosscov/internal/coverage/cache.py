"""Content-addressed cache of instrumented source.

Entries are named after a hash of the source, its filename and a salt naming
everything that affects the instrumented output, so an entry never changes
once written. Concurrent writers of the same key write identical content
through :func:`atomic_write`, which needs no locking across processes::

    <cache_dir>/<hash><ext>   instrumented source
    <cache_dir>/<hash>.map    JSON source map of the original file
"""
import hashlib
import importlib.util
import json
import os
import shutil
import typing as t

from crosscov.internal.logger import get_logger
from crosscov.internal.utils.fs import atomic_write
from crosscov.version import __version__


log = get_logger(__name__)


MAP_SUFFIX = ".map"


def cache_salt(instrumenter=None):
    # type: (t.Optional[t.Any]) -> str
    """Everything besides the source itself that changes the instrumented code."""
    return json.dumps(
        {
            "crosscov": __version__,
            "instrumenter": [getattr(instrumenter, "name", None), getattr(instrumenter, "version", None)],
            "magic": importlib.util.MAGIC_NUMBER.hex(),
        },
        sort_keys=True,
    )


def cache_key(code, filename, salt, version=__version__):
    # type: (str, str, str, str) -> str
    h = hashlib.md5()  # nosec: not used for security
    for part in (code, filename, salt):
        h.update(part.encode("utf-8", "surrogatepass"))
        h.update(b"\0")
    return "%s_%s" % (h.hexdigest(), version)


class ContentCache:
    def __init__(self, directory, enabled=True):
        # type: (str, bool) -> None
        self.directory = directory
        self.enabled = enabled and bool(directory)

    def __repr__(self):
        return "ContentCache(directory=%r, enabled=%r)" % (self.directory, self.enabled)

    def _path(self, key, ext):
        # type: (str, str) -> str
        return os.path.join(self.directory, key + ext)

    def lookup(self, key, ext):
        # type: (str, str) -> t.Optional[str]
        if not self.enabled:
            return None
        try:
            with open(self._path(key, ext), "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError):
            log.debug("Ignoring unreadable cache entry %s%s", key, ext, exc_info=True)
            return None

    def store(self, key, ext, content, replace=False):
        # type: (str, str, str, bool) -> None
        """Store ``content`` under ``key``.

        An existing entry is kept unless ``replace`` is set, for entries found
        to be corrupt.
        """
        if not self.enabled:
            return
        path = self._path(key, ext)
        if not replace and os.path.exists(path):
            # Same key, same content
            return
        try:
            atomic_write(path, content)
        except OSError:
            log.debug("Cannot write cache entry %s", path, exc_info=True)

    def lookup_map(self, key):
        # type: (str) -> t.Optional[t.Dict[str, t.Any]]
        """The source map stored with ``key``.

        This does not depend on ``enabled``: maps are read back when the
        coverage of a cached run is aggregated.
        """
        try:
            with open(self._path(key, MAP_SUFFIX), "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            log.debug("Ignoring unreadable source map %s%s", key, MAP_SUFFIX, exc_info=True)
            return None
        if not isinstance(data, dict):
            log.debug("Ignoring malformed source map %s%s", key, MAP_SUFFIX)
            return None
        return data

    def store_map(self, key, source_map):
        # type: (str, t.Dict[str, t.Any]) -> None
        self.store(key, MAP_SUFFIX, json.dumps(source_map, sort_keys=True))

    def clear(self):
        # type: () -> None
        shutil.rmtree(self.directory, ignore_errors=True)
