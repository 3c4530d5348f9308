import logging
from typing import Optional

from crosscov.internal.logger import CrossCovFormatter
from crosscov.internal.utils.formats import asbool


DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(filename)s:%(lineno)d] - %(message)s"


def configure_crosscov_logger(environ=None):
    # type: (Optional[dict]) -> None
    """Configures crosscov log levels.

    Customization is possible with the environment variables ``CROSSCOV_DEBUG``
    and ``CROSSCOV_LOG_STREAM_HANDLER``.

    By default crosscov loggers only report warnings and errors, on stderr, so
    that the output of the program under test is left untouched.
    """
    import os

    environ = os.environ if environ is None else environ

    crosscov_logger = logging.getLogger("crosscov")
    if asbool(environ.get("CROSSCOV_LOG_STREAM_HANDLER", "true")) and not crosscov_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(CrossCovFormatter(DEFAULT_LOG_FORMAT))
        crosscov_logger.addHandler(handler)

    if asbool(environ.get("CROSSCOV_DEBUG")):
        crosscov_logger.setLevel(logging.DEBUG)
    else:
        crosscov_logger.setLevel(logging.WARNING)
