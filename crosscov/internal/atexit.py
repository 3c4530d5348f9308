# -*- encoding: utf-8 -*-
"""
An API to provide atexit functionalities
"""
import atexit
import contextlib
import logging
import os
import signal
import threading
import typing  # noqa:F401

from crosscov.internal.utils import signals


log = logging.getLogger(__name__)


unregistered_signals = set()  # type: typing.Set[typing.Callable]
_exit_signal_funcs = []  # type: typing.List[typing.Callable]
_deferred_signals = []  # type: typing.List[int]
_deferring = 0

EXIT_SIGNALS = tuple(
    s for s in (getattr(signal, name, None) for name in ("SIGTERM", "SIGINT", "SIGHUP")) if s is not None
)


def register(func, register_signal=False):
    # type: (typing.Callable, bool) -> None
    """
    Register a function to be called when the program exits.
    """
    atexit.register(func)
    if register_signal:
        # Register the function to be called when an exit signal (TERM, INT or HUP) is received.
        register_on_exit_signal(func)
        unregistered_signals.discard(func)


def unregister(func):
    # type: (typing.Callable) -> None
    """
    Unregister a function to be called when the program exits.
    """
    unregistered_signals.add(func)
    atexit.unregister(func)


def _run_exit_signal_funcs():
    # type: () -> None
    for f in list(_exit_signal_funcs):
        if f in unregistered_signals:
            continue
        try:
            f()
        except Exception:
            log.debug("Exit signal function %r failed", f, exc_info=True)


def _handle_exit(sig, frame, previous):
    if _deferring:
        _deferred_signals.append(sig)
        return

    # A Python-level handler decides whether the process exits at all. If it
    # does, the atexit hooks take care of the registered functions.
    if callable(previous):
        previous(sig, frame)
        return

    if previous == signal.SIG_IGN:
        return

    _run_exit_signal_funcs()

    # Re-raise with the default disposition so that the exit status is the
    # one the process would have had without us.
    signal.signal(sig, signal.SIG_DFL)
    os.kill(os.getpid(), sig)


def register_on_exit_signal(f):
    # type: (typing.Callable) -> None
    """Run ``f`` synchronously before the process is killed by an exit signal."""
    if f not in _exit_signal_funcs:
        _exit_signal_funcs.append(f)

    if threading.current_thread() is threading.main_thread():
        for sig in EXIT_SIGNALS:
            try:
                signals.handle_signal(sig, _handle_exit)
            except Exception:
                log.debug("Cannot handle signal %s, coverage is only written on normal exit", sig, exc_info=True)


@contextlib.contextmanager
def exit_signals_deferred():
    # type: () -> typing.Iterator[None]
    """Hold off the exit signals handled here until the block completes.

    A signal received in the block is sent again when the block is left, so
    the process still exits, only once the block is done.
    """
    global _deferring

    _deferring += 1
    try:
        yield
    finally:
        _deferring -= 1
        if not _deferring and _deferred_signals:
            sig = _deferred_signals[-1]
            del _deferred_signals[:]
            os.kill(os.getpid(), sig)
