"""Inverted index: for every word, which documents contain it."""

import os
import re

_WORD_RE = re.compile(r"[A-Za-z]+")


def map_fn(filename, contents):
    document = os.path.basename(filename)
    for word in set(_WORD_RE.findall(contents)):
        yield (word, document)


def reduce_fn(word, documents):
    """Output is "<count> <doc1>,<doc2>,..." with documents sorted."""
    documents = sorted(set(documents))
    return f"{len(documents)} {','.join(documents)}"
