"""Version of the installed distribution, kept apart from the package to avoid circular imports.

The version is part of every cache key, so an upgrade invalidates the
instrumentation cached by older releases.
"""
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _distribution_version


def get_version():
    # type: () -> str
    try:
        return _distribution_version("crosscov")
    except PackageNotFoundError:
        # Running from a source checkout
        return "0.0.0.dev0"


__version__ = get_version()
