#!/usr/bin/env python3
"""
Test the vectors subsystem: dimensionality sniffing and vector parsing.
"""

import sys
import warnings
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

from ingest import LineRef, buffer_to_lines
from ktree import Allocator, VectorObject
from vectors import (
    count_dimensions,
    sniff_dimensions,
    parse_vector,
    parse_vectors,
    unittest,
    VectorParseError,
    MalformedVectorLineError,
)


def _line(text: bytes) -> LineRef:
    return LineRef(text, 0, len(text))


@pytest.fixture
def memory():
    return Allocator(block_size=64)


# ============================================================
# Dimensionality Sniffer
# ============================================================

@pytest.mark.parametrize("text, expected", [
    (b"1.0 2.0 3.0", 3),
    (b"   ", 0),
    (b"", 0),
    (b"\t1\t 2  ", 2),
    (b"42", 1),
])
def test_count_dimensions(text, expected):
    assert count_dimensions(_line(text)) == expected


def test_sniff_uses_first_line_only():
    lines = buffer_to_lines(b"1 2 3 4\n1 2\n")
    assert sniff_dimensions(lines) == 4


def test_sniff_rejects_empty_first_line():
    lines = buffer_to_lines(b"  \t \n1 2\n")
    with pytest.raises(VectorParseError, match="line 1"):
        sniff_dimensions(lines)


def test_sniff_rejects_no_lines():
    with pytest.raises(VectorParseError):
        sniff_dimensions([])


# ============================================================
# Vector Parser
# ============================================================

def test_parse_vector(memory):
    example = VectorObject(memory.malloc(3))
    slot = example.new_object(memory)
    result = parse_vector(_line(b"1.5 -2.25 0"), 3, slot)
    assert result is slot
    assert result.vector.tolist() == [1.5, -2.25, 0.0]


def test_parse_vector_accepts_exponents_and_tabs(memory):
    example = VectorObject(memory.malloc(2))
    result = parse_vector(_line(b"\t1e2   -5E-1 "), 2, example.new_object(memory))
    assert result.vector.tolist() == [100.0, -0.5]


@pytest.mark.parametrize("text", [b"1 2", b"1 2 3 4", b"   "])
def test_parse_vector_rejects_wrong_length(memory, text):
    example = VectorObject(memory.malloc(3))
    with pytest.raises(MalformedVectorLineError, match="expected 3 components"):
        parse_vector(_line(text), 3, example.new_object(memory))


def test_parse_vector_rejects_non_numbers(memory):
    example = VectorObject(memory.malloc(2))
    with pytest.raises(MalformedVectorLineError, match="component 2"):
        parse_vector(_line(b"1.0 abc"), 2, example.new_object(memory))


@pytest.mark.parametrize("text, component", [
    (b"nan 0", 1),
    (b"0 inf", 2),
    (b"-Infinity 1", 1),
    (b"1e39 0", 1),
    (b"0 -1e39", 2),
])
def test_parse_vector_rejects_non_finite(memory, text, component):
    example = VectorObject(memory.malloc(2))
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        with pytest.raises(MalformedVectorLineError, match=f"component {component} is not finite"):
            parse_vector(_line(text), 2, example.new_object(memory))


def test_malformed_line_reports_physical_line_number(memory):
    lines = buffer_to_lines(b"1 2\n\n\n3 4 5\n")
    example = VectorObject(memory.malloc(2))
    with pytest.raises(MalformedVectorLineError) as exc:
        parse_vectors(lines, 2, example, memory)
    assert exc.value.line_number == 4
    assert "line 4" in str(exc.value)


def test_parse_vectors_keeps_file_order(memory):
    rows = [[float(i), float(-i), i / 4] for i in range(10)]
    text = "\n\n".join(" ".join(str(v) for v in row) for row in rows).encode()
    lines = buffer_to_lines(text)
    dimensions = sniff_dimensions(lines)
    example = VectorObject(memory.malloc(dimensions))

    vector_list = parse_vectors(lines, dimensions, example, memory)

    assert len(vector_list) == len(rows)
    assert all(obj.dimensions == 3 for obj in vector_list)
    assert [obj.vector.tolist() for obj in vector_list] == rows


def test_parsed_vectors_do_not_share_storage(memory):
    lines = buffer_to_lines(b"1 1\n2 2\n")
    example = VectorObject(memory.malloc(2))
    first, second = parse_vectors(lines, 2, example, memory)
    first.vector[0] = 9.0
    assert second.vector.tolist() == [2.0, 2.0]
    assert example.vector.tolist() == [0.0, 0.0]


def test_self_check_passes():
    unittest()
