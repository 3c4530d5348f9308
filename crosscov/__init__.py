from ._logger import configure_crosscov_logger


# configure crosscov logger before other modules log
configure_crosscov_logger()  # noqa: E402

from .internal.coverage.data import CoverageMap  # noqa: E402
from .internal.coverage.data import FileCoverage  # noqa: E402
from .internal.coverage.session import CoverageSession  # noqa: E402
from .version import __version__  # noqa: E402


__all__ = [
    "__version__",
    "CoverageMap",
    "CoverageSession",
    "FileCoverage",
]
