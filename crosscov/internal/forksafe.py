"""
Hooks run in the child process after a fork.

A forked child inherits the coverage counters and the lineage of its parent.
Components holding such state register a hook here to start afresh in the
child, e.g. the coverage writer of the process::

    forksafe.register(writer._after_fork)

Locks created with :func:`Lock` are replaced by new, released locks in the
child, whatever state the parent left them in.
"""
import logging
import os
import threading
import typing
import weakref

import wrapt


log = logging.getLogger(__name__)


_registry = []  # type: typing.List[typing.Callable[[], None]]


def _run_child_hooks():
    # type: () -> None
    # Hooks may register or unregister hooks while running
    for hook in list(_registry):
        try:
            hook()
        except Exception:
            log.exception("Exception ignored in after fork hook %r", hook)


def register(after_in_child):
    # type: (typing.Callable[[], None]) -> typing.Callable[[], None]
    """Run ``after_in_child`` in every child forked from now on.

    The hook stays registered in the children, so it also runs after nested
    forks. Returns the hook, so this can be used as a decorator.
    """
    _registry.append(after_in_child)
    return after_in_child


def unregister(after_in_child):
    # type: (typing.Callable[[], None]) -> None
    """Stop running ``after_in_child`` after forks.

    Raises ``ValueError`` if the hook is not registered.
    """
    _registry.remove(after_in_child)


os.register_at_fork(after_in_child=_run_child_hooks)


_locks = weakref.WeakSet()  # type: weakref.WeakSet[ForkSafeLock]


@register
def _renew_locks():
    # type: () -> None
    for lock in list(_locks):
        lock._renew()


class ForkSafeLock(wrapt.ObjectProxy):
    """A ``threading.Lock`` proxy that holds a new lock in forked children.

    The thread holding the lock at fork time does not exist in the child, so
    the inherited lock could never be released there.
    """

    def __init__(self):
        # type: () -> None
        super(ForkSafeLock, self).__init__(threading.Lock())
        _locks.add(self)

    def _renew(self):
        # type: () -> None
        self.__wrapped__ = threading.Lock()


def Lock():
    # type: () -> ForkSafeLock
    return ForkSafeLock()
