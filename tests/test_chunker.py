import pytest

from mapreduce_sim.utils.chunker import chunk_file_by_lines, chunk_inputs


def many_line_file(tmp_path, line_count, name="source.txt"):
    path = tmp_path / name
    path.write_text("1\n" * line_count)
    return str(path)


def test_chunk_by_lines_even_split(tmp_path):
    path = many_line_file(tmp_path, 10_000)

    chunks = chunk_file_by_lines(path, str(tmp_path / "chunks"), 1000)

    assert len(chunks) == 10
    for chunk in chunks:
        assert chunk.line_count() == 1000
        assert chunk.true_line_count() == 1000
    assert not (tmp_path / "chunks" / "10").exists()


def test_chunk_by_lines_with_remainder(tmp_path):
    path = many_line_file(tmp_path, 10_500)

    chunks = chunk_file_by_lines(path, str(tmp_path / "chunks"), 1000)

    assert len(chunks) == 11
    for chunk in chunks[:-1]:
        assert chunk.line_count() == 1000
        assert chunk.true_line_count() == 1000
    assert chunks[-1].line_count() == 500
    assert chunks[-1].true_line_count() == 500
    assert (chunks[-1].line_start, chunks[-1].line_end) == (10_000, 10_500)
    assert chunks[-1].source == path


def test_last_line_without_newline_kept(tmp_path):
    path = tmp_path / "source.txt"
    path.write_text("a\nb\nc")

    chunks = chunk_file_by_lines(str(path), str(tmp_path / "chunks"), 2)

    with open(chunks[1].path) as f:
        assert f.read() == "c\n"


def test_chunk_inputs_keeps_sources_apart(tmp_path):
    first = many_line_file(tmp_path, 3, "a.txt")
    second = many_line_file(tmp_path, 3, "b.txt")

    paths = chunk_inputs([first, second], str(tmp_path / "chunks"), 2)

    assert len(paths) == 4
    assert len(set(paths)) == 4


def test_max_lines_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        chunk_file_by_lines(many_line_file(tmp_path, 1), str(tmp_path), 0)
