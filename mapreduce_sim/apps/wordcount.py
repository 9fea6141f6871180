"""Word count: how many times each word appears across all inputs."""

import re

_WORD_RE = re.compile(r"[A-Za-z]+")


def map_fn(filename, contents):
    """Emit (word, 1) for every word in the file.

    Args:
        filename: Name of the file
        contents: Contents of the file

    Yields:
        (word, 1) pairs
    """
    for word in _WORD_RE.findall(contents):
        yield (word, 1)


def reduce_fn(word, counts):
    """Total count for one word."""
    return sum(int(c) for c in counts)
