import os
import tempfile


def atomic_write(path, content, encoding="utf-8"):
    # type: (str, str, str) -> None
    """Write ``content`` to ``path`` so that readers never observe a partial file.

    The content goes to a temporary file in the destination directory first,
    which is then moved over the destination with ``os.replace``. Concurrent
    writers of the same path each produce a complete file and the last one
    wins. The destination directory is created when missing.
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
