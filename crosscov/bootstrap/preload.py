"""
Bootstrapping code that is run in every Python process started by
`crosscov-run`: the process joins the coverage run of its parent.
"""
import os
import typing as t

from crosscov.internal.coverage.process import ROOT_ID_ENV
from crosscov.internal.coverage.session import CoverageSession
from crosscov.internal.logger import get_logger


log = get_logger(__name__)

session = None  # type: t.Optional[CoverageSession]


if ROOT_ID_ENV in os.environ:
    session = CoverageSession().wrap()
    log.debug("Process %d joined coverage run %s", os.getpid(), os.environ[ROOT_ID_ENV])
