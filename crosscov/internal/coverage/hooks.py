"""Load interceptors.

A load interceptor hooks one of the ways the interpreter turns a file into
code and routes the source through a ``transform(path, source) -> source``
callback before it is compiled. Interceptors never let a failure of the
callback reach the code being loaded: the original source is used instead.
"""
import abc
import importlib.util
import os
import typing as t

import wrapt

from crosscov._exceptions import InterceptorError
from crosscov.internal.logger import get_logger
from crosscov.internal.utils import get_argument_value


log = get_logger(__name__)


TransformType = t.Callable[[str, str], str]
PredicateType = t.Callable[[str], bool]


class LoadInterceptor(abc.ABC):
    """Base class of the load interceptors.

    Each interceptor class has at most one installed instance.
    """

    _instance = None  # type: t.Optional[LoadInterceptor]

    def __init__(self, transform, should_transform=None):
        # type: (TransformType, t.Optional[PredicateType]) -> None
        self._transform = transform
        self.should_transform = should_transform if should_transform is not None else (lambda path: True)

    def transform(self, path, source):
        # type: (str, str) -> str
        try:
            return self._transform(path, source)
        except Exception:
            log.warning("Failed to transform %s, using the original source", path, exc_info=True)
            return source

    def compile(self, source, path, filename=None, optimize=-1):
        # type: (str, str, t.Optional[str], int) -> t.Any
        """Compile the transformed ``source``.

        Transformed code that does not compile, e.g. a corrupt cache entry, is
        logged and the original source is compiled instead, so that errors in
        the original source surface unchanged.
        """
        filename = filename or path
        transformed = self.transform(path, source)
        if transformed != source:
            try:
                return compile(transformed, filename, "exec", dont_inherit=True, optimize=optimize)
            except (SyntaxError, ValueError):
                log.warning("Transformed source of %s does not compile, using the original source", path)
        return compile(source, filename, "exec", dont_inherit=True, optimize=optimize)

    @abc.abstractmethod
    def _install(self):
        # type: () -> None
        pass

    @abc.abstractmethod
    def _uninstall(self):
        # type: () -> None
        pass

    @classmethod
    def install(cls, transform, **kwargs):
        # type: (TransformType, t.Any) -> LoadInterceptor
        if cls.is_installed():
            raise InterceptorError("%s is already installed" % cls.__name__)

        instance = cls(transform, **kwargs)
        instance._install()
        cls._instance = instance
        log.debug("%s installed", cls.__name__)
        return instance

    @classmethod
    def is_installed(cls):
        # type: () -> bool
        return cls._instance is not None and type(cls._instance) is cls

    @classmethod
    def uninstall(cls):
        # type: () -> None
        if not cls.is_installed():
            raise InterceptorError("%s is not installed" % cls.__name__)

        t.cast(LoadInterceptor, cls._instance)._uninstall()
        cls._instance = None
        log.debug("%s uninstalled", cls.__name__)


class RunPathInterceptor(LoadInterceptor):
    """Intercept the scripts executed by ``runpy.run_path``."""

    def _install(self):
        import runpy

        wrapt.wrap_function_wrapper(runpy, "_get_code_from_file", self._get_code_from_file)

    def _uninstall(self):
        import runpy

        runpy._get_code_from_file = runpy._get_code_from_file.__wrapped__  # type: ignore[attr-defined]

    def _get_code_from_file(self, wrapped, instance, args, kwargs):
        # The file name is the last argument, preceded by the run name on
        # older interpreters, which also return it with the code.
        n = len(args) + len(kwargs)
        fname = get_argument_value(args, kwargs, n - 1, "fname")
        path = os.path.abspath(fname)

        if not os.path.isfile(path) or not self.should_transform(path):
            return wrapped(*args, **kwargs)

        with open(path, "rb") as f:
            source = importlib.util.decode_source(f.read())

        code = self.compile(source, path, fname)
        return (code, fname) if n > 1 else code
