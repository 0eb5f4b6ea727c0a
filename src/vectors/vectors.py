# vectors.py
# ktree-build – Vectors subsystem: tokenize lines and parse them into fixed-length vectors

from typing import List, Sequence

import numpy as np

from ingest import LineRef, buffer_to_lines
from ktree import Allocator, VectorObject


# ============================================================
# Exceptions
# ============================================================

class VectorParseError(Exception):
    pass


class MalformedVectorLineError(VectorParseError):
    """A line whose tokens do not form a vector of the expected length."""

    def __init__(self, line: LineRef, reason: str):
        self.line_number = line.line_number
        self.reason = reason
        super().__init__(f"Malformed vector on line {self.line_number}: {reason}")


# ============================================================
# Dimensionality Sniffer
# ============================================================

def count_dimensions(line: LineRef) -> int:
    """
    Count the whitespace-delimited tokens on a line.

    A line that is all whitespace has zero tokens.
    """
    return len(line.view().tobytes().split())


def sniff_dimensions(lines: Sequence[LineRef]) -> int:
    """
    Fix the dimensionality for a run from its first line.

    Raises:
        VectorParseError: No lines, or the first line has no tokens
    """
    if not lines:
        raise VectorParseError("No lines to take the dimensionality from")

    dimensions = count_dimensions(lines[0])
    if dimensions == 0:
        raise VectorParseError(
            f"First vector (line {lines[0].line_number}) has no components"
        )
    return dimensions


# ============================================================
# Vector Parser
# ============================================================

def parse_vector(line: LineRef, dimensions: int, slot: VectorObject) -> VectorObject:
    """
    Fill a vector slot from one line.

    Args:
        line: Line to parse
        dimensions: Expected number of components
        slot: Fresh object from the index's object factory

    Returns:
        The filled slot

    Raises:
        MalformedVectorLineError: Token count differs from `dimensions`,
                                  or a token is not a finite number
    """
    tokens = line.view().tobytes().split()
    if len(tokens) != dimensions:
        raise MalformedVectorLineError(
            line, f"expected {dimensions} components, found {len(tokens)}"
        )

    # Overflow to inf is reported below, not warned about
    with np.errstate(over="ignore"):
        for dimension, token in enumerate(tokens):
            try:
                slot.vector[dimension] = float(token)
            except ValueError:
                raise MalformedVectorLineError(
                    line, f"component {dimension + 1} is not a number: {token.decode('ascii', 'replace')!r}"
                ) from None

    not_finite = np.flatnonzero(~np.isfinite(slot.vector))
    if len(not_finite):
        raise MalformedVectorLineError(
            line, f"component {not_finite[0] + 1} is not finite: {tokens[not_finite[0]].decode('ascii', 'replace')!r}"
        )

    return slot


def parse_vectors(
    lines: Sequence[LineRef],
    dimensions: int,
    example: VectorObject,
    allocator: Allocator,
) -> List[VectorObject]:
    """
    Parse every line into a new vector object.

    Nothing is inserted anywhere: the caller gets the whole batch, in file
    order, only if every line parsed.

    Args:
        lines: Lines in file order
        dimensions: Fixed dimensionality
        example: Object whose new_object() yields slots of that size
        allocator: Memory for the slots

    Returns:
        List of filled VectorObjects, one per line
    """
    vector_list = []
    for line in lines:
        slot = example.new_object(allocator)
        vector_list.append(parse_vector(line, dimensions, slot))
    return vector_list


# ============================================================
# Self-check
# ============================================================

def unittest() -> None:
    """Self-check of the sniffer and parser. Raises AssertionError on failure."""
    lines = buffer_to_lines(b"1.0 2.0 3.0\n   \n1.5 -2.25 0\n1 2\n")
    assert [count_dimensions(line) for line in lines] == [3, 0, 3, 2]
    assert sniff_dimensions(lines) == 3

    memory = Allocator(block_size=16)
    example = VectorObject(memory.malloc(3))
    vector = parse_vector(lines[2], 3, example.new_object(memory))
    assert vector.vector.tolist() == [1.5, -2.25, 0.0]

    try:
        parse_vector(lines[3], 3, example.new_object(memory))
    except MalformedVectorLineError as e:
        assert e.line_number == 4
    else:
        raise AssertionError("short line accepted")
