from importlib.machinery import ModuleSpec
from importlib.machinery import SourceFileLoader
from importlib.util import decode_source
from importlib.util import find_spec
from importlib.util import spec_from_file_location
import os
import sys
from types import ModuleType
from typing import Iterable
from typing import List
from typing import Optional
from typing import Set  # noqa:F401
from typing import cast

from crosscov.internal.coverage.hooks import LoadInterceptor
from crosscov.internal.coverage.hooks import PredicateType
from crosscov.internal.coverage.hooks import TransformType
from crosscov.internal.logger import get_logger


log = get_logger(__name__)


class InstrumentingLoader(SourceFileLoader):
    """Source loader compiling the transformed source of a module.

    The module keeps its real path, so ``__file__``, ``__spec__`` and the
    file names in tracebacks are those of the original file. Bytecode caches
    are neither read nor written.
    """

    def __init__(self, fullname, path, interceptor):
        # type: (str, str, LoadInterceptor) -> None
        super(InstrumentingLoader, self).__init__(fullname, path)
        self.interceptor = interceptor

    def get_code(self, fullname):
        source_path = self.get_filename(fullname)
        return self.source_to_code(self.get_data(source_path), source_path)

    def source_to_code(self, data, path, *args, **kwargs):
        optimize = kwargs.get("_optimize", -1)
        source = decode_source(data) if isinstance(data, (bytes, bytearray)) else data
        return self.interceptor.compile(source, str(path), optimize=optimize)


def _is_source_spec(spec):
    # type: (ModuleSpec) -> bool
    return type(spec.loader) is SourceFileLoader and spec.origin is not None and spec.has_location


class ModuleInterceptor(LoadInterceptor):
    """Intercept the source modules found by the import system.

    The interceptor sits at the front of ``sys.meta_path`` and lets the other
    finders find the module. When they return a source module with a
    registered extension, its loader is replaced with an
    :class:`InstrumentingLoader`. Modules with an extension unknown to the
    import system are looked up on the search path by the interceptor itself.
    """

    def __init__(self, transform, should_transform=None, extensions=(".py",)):
        # type: (TransformType, Optional[PredicateType], Iterable[str]) -> None
        super(ModuleInterceptor, self).__init__(transform, should_transform)
        self.extensions = [e.lower() for e in extensions]
        self._finding = set()  # type: Set[str]

    def _install(self):
        # type: () -> None
        sys.meta_path.insert(0, self)  # type: ignore[arg-type]

    def _uninstall(self):
        # type: () -> None
        for i, finder in enumerate(sys.meta_path):
            if finder is self:
                sys.meta_path.pop(i)
                return
        raise RuntimeError("%s is not in sys.meta_path" % type(self).__name__)

    def _wants(self, origin):
        # type: (str) -> bool
        return os.path.splitext(origin)[1].lower() in self.extensions and self.should_transform(origin)

    def _find_extra_extension(self, fullname, path):
        # type: (str, Optional[Iterable[str]]) -> Optional[ModuleSpec]
        extra = [e for e in self.extensions if e != ".py"]
        if not extra:
            return None

        name = fullname.rpartition(".")[2]
        for entry in path if path is not None else sys.path:
            base = os.path.join(os.path.abspath(entry or os.curdir), name)
            for ext in extra:
                init = os.path.join(base, "__init__" + ext)
                if os.path.isfile(init) and self._wants(init):
                    return spec_from_file_location(
                        fullname, init, loader=InstrumentingLoader(fullname, init, self), submodule_search_locations=[base]
                    )
                if os.path.isfile(base + ext) and self._wants(base + ext):
                    return spec_from_file_location(
                        fullname, base + ext, loader=InstrumentingLoader(fullname, base + ext, self)
                    )
        return None

    def find_spec(self, fullname, path=None, target=None):
        # type: (str, Optional[List[str]], Optional[ModuleType]) -> Optional[ModuleSpec]
        if fullname in self._finding:
            return None

        self._finding.add(fullname)

        try:
            try:
                # Best effort
                spec = find_spec(fullname)
            except Exception:
                return None

            if spec is None:
                return self._find_extra_extension(fullname, path)

            if not _is_source_spec(spec) or not self._wants(cast(str, spec.origin)):
                return spec

            log.debug("Intercepting the load of module %s from %s", fullname, spec.origin)
            spec.loader = InstrumentingLoader(fullname, cast(str, spec.origin), self)
            return spec

        finally:
            self._finding.remove(fullname)

    def invalidate_caches(self):
        # type: () -> None
        pass

