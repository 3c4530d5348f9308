"""
Entry point of crosscov in the processes started by `crosscov-run`.

`crosscov-run` puts this directory at the head of PYTHONPATH, so the
interpreter imports this module at startup in place of the ``sitecustomize``
the program may have. The process joins the coverage run (see preload.py),
then the program's own ``sitecustomize``, if any, is imported as usual.
"""
import os
import sys

from crosscov.internal.logger import get_logger


log = get_logger(__name__)


def _chain_sitecustomize():
    # type: () -> None
    bootstrap_dir = os.path.dirname(os.path.abspath(__file__))
    paths = [p for p in sys.path if os.path.abspath(p or os.curdir) == bootstrap_dir]
    if not paths:
        # Imported explicitly, not as the sitecustomize of the interpreter
        return

    index = sys.path.index(paths[0])
    del sys.path[index]

    this_module = sys.modules.pop("sitecustomize", None)
    if this_module is not None:
        sys.modules.setdefault("crosscov.bootstrap.sitecustomize", this_module)

    try:
        import sitecustomize  # noqa:F401
    except ImportError:
        log.debug("No sitecustomize found besides the crosscov one")
        if this_module is not None:
            sys.modules["sitecustomize"] = this_module
    else:
        log.debug("Chained to the sitecustomize found in %s", sys.path)
    finally:
        # Keep the path as the interpreter set it up
        sys.path.insert(index, paths[0])


try:
    import crosscov.bootstrap.preload  # noqa:F401

    _chain_sitecustomize()

    # Checked by tests: the bootstrap completed without errors
    loaded = True
except Exception:
    loaded = False
    log.warning("Failed to set up crosscov coverage in process %d", os.getpid(), exc_info=True)
