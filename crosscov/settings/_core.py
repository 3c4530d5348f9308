from collections import ChainMap
import os
from typing import Mapping  # noqa:F401
from typing import Optional  # noqa:F401

from envier import Env


class CrossCovConfig(Env):
    """Provides support for loading configurations from multiple sources.

    Values come from the environment first and then from the explicit
    ``source`` mapping, which is how configuration is passed in from code
    (e.g. ``CoverageConfig(source={"CROSSCOV_ENABLE_CACHE": "true"})``).
    """

    def __init__(
        self,
        source=None,  # type: Optional[Mapping[str, str]]
        parent=None,  # type: Optional[Env]
    ):
        # type: (...) -> None
        self.env_source = os.environ
        self.code_source = dict(source or {})

        # Order of precedence: provided source < environment variables
        # DEV: set before parsing, derived values read raw entries from it
        self.full_source = ChainMap(self.env_source, self.code_source)

        super().__init__(source=self.full_source, parent=parent)
