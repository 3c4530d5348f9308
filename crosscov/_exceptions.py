class CrossCovError(Exception):
    """Base class for the errors crosscov raises to its API callers."""


class InstrumenterError(CrossCovError):
    pass


class InterceptorError(CrossCovError):
    pass
