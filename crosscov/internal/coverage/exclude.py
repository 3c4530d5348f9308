import os
import typing as t

from crosscov.internal.glob_matching import compile_patterns
from crosscov.internal.glob_matching import match_any


class TestExclude:
    """Decide which files get instrumented.

    Only files below ``cwd`` are considered. When include patterns are given a
    file must match one of them, and it must match none of the exclude
    patterns. Patterns are matched against the path relative to ``cwd``.
    """

    # Not a test class, despite the name
    __test__ = False

    def __init__(self, cwd, include=None, exclude=None):
        # type: (str, t.Optional[t.Iterable[str]], t.Optional[t.Iterable[str]]) -> None
        self.cwd = os.path.abspath(cwd)
        self.include = compile_patterns(include or [])
        self.exclude = compile_patterns(exclude or [])

    def relative_path(self, filename):
        # type: (str) -> str
        return os.path.relpath(os.path.abspath(filename), self.cwd).replace(os.sep, "/")

    def should_instrument(self, filename, rel_file=None):
        # type: (str, t.Optional[str]) -> bool
        if rel_file is None:
            try:
                rel_file = self.relative_path(filename)
            except ValueError:
                # Different drive on Windows
                return False

        if rel_file == ".." or rel_file.startswith("../") or os.path.isabs(rel_file):
            return False

        if self.include and not match_any(self.include, rel_file):
            return False

        return not match_any(self.exclude, rel_file)

    def glob(self, cwd=None, extensions=(".py",)):
        # type: (t.Optional[str], t.Iterable[str]) -> t.Iterator[str]
        """Yield the absolute paths of the instrumentable files below ``cwd``."""
        root = os.path.abspath(cwd or self.cwd)
        extensions = tuple(e.lower() for e in extensions)
        for dirpath, dirnames, filenames in os.walk(root):
            # Skip hidden directories such as .git and the cache
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if not name.lower().endswith(extensions):
                    continue
                path = os.path.join(dirpath, name)
                if self.should_instrument(path):
                    yield path
