"""
Split large input files into smaller chunk files.

Each chunk becomes its own map task, so a single huge input can still be
spread across many workers.
"""

import os
from dataclasses import dataclass
from itertools import islice


@dataclass
class FileChunk:
    """One chunk of a source file, stored as its own file at ``path``.

    ``line_start``/``line_end`` are the half-open range of source lines the
    chunk holds.
    """
    source: str
    line_start: int
    line_end: int
    path: str

    def line_count(self):
        """Number of lines the chunk is supposed to hold."""
        return self.line_end - self.line_start

    def true_line_count(self):
        """Number of lines actually found in the chunk file."""
        with open(self.path, 'r', encoding='utf-8') as f:
            return sum(1 for _ in f)


def chunk_file_by_lines(path, out_dir, max_lines):
    """Chunk ``path`` into files in ``out_dir`` with at most ``max_lines`` each.

    Chunk files are named ``0``, ``1``, ... in order. A trailing partial
    chunk is kept; no empty chunk is ever produced.

    Args:
        path: Source file
        out_dir: Directory for the chunk files (created if missing)
        max_lines: Maximum lines per chunk

    Returns:
        List of FileChunk in source order
    """
    if max_lines < 1:
        raise ValueError(f"max_lines must be >= 1, got {max_lines}")

    os.makedirs(out_dir, exist_ok=True)
    chunks = []

    with open(path, 'r', encoding='utf-8') as src:
        chunk_idx = 0
        while True:
            lines = list(islice(src, max_lines))
            if not lines:
                break

            chunk_path = os.path.join(out_dir, str(chunk_idx))
            with open(chunk_path, 'w', encoding='utf-8') as out:
                for line in lines:
                    out.write(line if line.endswith('\n') else line + '\n')

            line_start = max_lines * chunk_idx
            chunks.append(FileChunk(
                source=path,
                line_start=line_start,
                line_end=line_start + len(lines),
                path=chunk_path
            ))
            chunk_idx += 1

    return chunks


def chunk_inputs(input_files, out_dir, max_lines):
    """Chunk every input file, returning the flat list of chunk paths.

    Each source gets its own sub-directory so chunk names never collide.
    """
    paths = []
    for i, input_file in enumerate(input_files):
        target = os.path.join(out_dir, f"{i}-{os.path.basename(input_file)}")
        paths.extend(c.path for c in chunk_file_by_lines(input_file, target, max_lines))
    return paths
