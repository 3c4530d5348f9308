import signal
import sys


def handle_signal(sig, f):
    """
    Install ``f`` as the handler of signal ``sig``.

    ``f`` is called with the signal number, the current frame and the handler
    that was installed before it, so that it can decide whether to chain to
    it. Installing the same function twice does not wrap it twice. Nothing is
    installed while the interpreter is shutting down.
    """
    # signal.signal() may crash the interpreter once finalization started
    if sys.is_finalizing():
        return None

    try:
        old_signal = signal.getsignal(sig)
    except (OSError, ValueError):
        return None

    if getattr(old_signal, "__wrapped_handler__", None) is f:
        return old_signal

    def wrap_signals(signum, frame):
        f(signum, frame, old_signal)

    wrap_signals.__wrapped_handler__ = f  # type: ignore[attr-defined]

    try:
        return signal.signal(sig, wrap_signals)
    except (OSError, ValueError):
        # Not the main thread
        return None
