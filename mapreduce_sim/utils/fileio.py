import os
import tempfile


def atomic_write(path, text, encoding='utf-8'):
    """Write ``text`` to ``path`` so readers only ever see a complete file.

    The data goes to a temporary file in the destination directory first
    (``os.replace`` is only atomic within one filesystem), is flushed and
    fsynced, then renamed over the final name. If two writers race on the
    same path each rename installs a complete file and the last one wins.

    Args:
        path: Final file path
        text: File contents
        encoding: Text encoding

    Returns:
        str: ``path``
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    tmp = tempfile.NamedTemporaryFile(
        'w', encoding=encoding, dir=directory,
        prefix=f".{os.path.basename(path)}.", suffix='.tmp', delete=False
    )
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        # Never leave the temp file behind on failure
        if os.path.exists(tmp.name):
            os.remove(tmp.name)
        raise

    return path
