import typing as t


TRUE_VALUES = frozenset(("1", "true", "yes", "on"))


def asbool(value):
    # type: (t.Union[str, bool, None]) -> bool
    """Interpret an environment variable value as a flag.

    ``None`` (variable unset) is false. Strings are true when they read
    ``1``, ``true``, ``yes`` or ``on``, in any case and surrounding blanks
    ignored.
    """
    if value is None:
        return False

    if isinstance(value, bool):
        return value

    return value.strip().lower() in TRUE_VALUES
