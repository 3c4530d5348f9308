from typing import Any
from typing import Dict
from typing import Sequence


class ArgumentError(Exception):
    """Raised when an argument of a wrapped call is found neither by position nor by keyword."""


def get_argument_value(
    args,  # type: Sequence[Any]
    kwargs,  # type: Dict[str, Any]
    pos,  # type: int
    kw,  # type: str
):
    # type: (...) -> Any
    """
    Return the value of an argument of a wrapped call.

    Wrappers see the packed ``args`` and ``kwargs`` of the call, not the
    signature of the wrapped function. The keyword wins over the position.

    :param args: Positional arguments
    :param kwargs: Keyword arguments
    :param pos: The positional index of the argument
    :param kw: The name of the argument
    :raises ArgumentError: The argument was not passed
    """
    if kw in kwargs:
        return kwargs[kw]
    if 0 <= pos < len(args):
        return args[pos]
    raise ArgumentError("%s (at position %d)" % (kw, pos))
