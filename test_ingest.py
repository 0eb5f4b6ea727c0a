#!/usr/bin/env python3
"""
Test the ingest subsystem: file loading and line splitting.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

from ingest import (
    read_entire_file,
    buffer_to_lines,
    count_lines,
    unittest,
    LineRef,
    IngestError,
    UnreadableInputError,
)


def _texts(lines):
    return [bytes(line) for line in lines]


# ============================================================
# File Loader
# ============================================================

def test_read_entire_file(tmp_path):
    path = tmp_path / "vectors.txt"
    path.write_bytes(b"0 0\n1 1\n")
    assert read_entire_file(path) == b"0 0\n1 1\n"


def test_read_missing_file_names_the_file(tmp_path):
    path = tmp_path / "missing.txt"
    with pytest.raises(UnreadableInputError) as exc:
        read_entire_file(path)
    assert str(path) in str(exc.value)
    assert isinstance(exc.value, IngestError)


def test_read_empty_file_fails(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_bytes(b"")
    with pytest.raises(UnreadableInputError, match="empty"):
        read_entire_file(path)


def test_read_directory_fails(tmp_path):
    with pytest.raises(UnreadableInputError):
        read_entire_file(tmp_path)


# ============================================================
# Line Splitter
# ============================================================

def test_blank_lines_are_dropped():
    lines = buffer_to_lines(b"a b\n\n\nc d\n")
    assert _texts(lines) == [b"a b", b"c d"]


@pytest.mark.parametrize("buffer, expected", [
    (b"", []),
    (b"\n", []),
    (b"\r\n\r\n\n\r", []),
    (b"x", [b"x"]),
    (b"x\n", [b"x"]),
    (b"\nx", [b"x"]),
    (b"x\ny", [b"x", b"y"]),
    (b"x\r\ny\r\n", [b"x", b"y"]),
    (b"x\ry\r\rz", [b"x", b"y", b"z"]),
    (b"\n\n1 2\n\n3 4\n\n", [b"1 2", b"3 4"]),
    (b"   \n", [b"   "]),
])
def test_split_cases(buffer, expected):
    lines = buffer_to_lines(buffer)
    assert _texts(lines) == expected
    assert count_lines(buffer) == len(expected)


def test_zero_byte_ends_buffer():
    lines = buffer_to_lines(b"1 2\n3 4\x005 6\n7 8\n")
    assert _texts(lines) == [b"1 2", b"3 4"]


def test_lines_do_not_copy_or_modify_buffer():
    buffer = b"1 2\n\n3 4\n"
    lines = buffer_to_lines(buffer)
    assert buffer == b"1 2\n\n3 4\n"
    assert all(line.buffer is buffer for line in lines)
    assert lines[1].view().obj is buffer
    assert (lines[1].start, lines[1].end) == (5, 8)
    assert len(lines[1]) == 3


def test_resplitting_a_line_does_not_subdivide_it():
    for line in buffer_to_lines(b"1 2 3\r\n\r\n4 5 6\n7\n"):
        again = buffer_to_lines(bytes(line))
        assert _texts(again) == [bytes(line)]


def test_line_numbers_count_blank_lines():
    lines = buffer_to_lines(b"a\n\n\nb\r\nc\rd")
    assert [line.line_number for line in lines] == [1, 4, 5, 6]


def test_line_ref_str():
    assert str(LineRef(b"xx1.5 2yy", 2, 7)) == "1.5 2"


def test_self_check_passes():
    unittest()
