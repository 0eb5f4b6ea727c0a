"""
Vectors subsystem for ktree-build.

Purpose: Turn non-blank lines into fixed-length float vectors.

Responsibilities:
- Fix the dimensionality from the first line
- Parse each line's whitespace-separated tokens as floats into a slot
  obtained from the index's object factory
- Reject any line whose token count differs from the dimensionality

Non-responsibilities:
- No file I/O
- No insertion into the index
"""

from .vectors import (
    count_dimensions,
    sniff_dimensions,
    parse_vector,
    parse_vectors,
    unittest,
    VectorParseError,
    MalformedVectorLineError,
)

__all__ = [
    "count_dimensions",
    "sniff_dimensions",
    "parse_vector",
    "parse_vectors",
    "unittest",
    "VectorParseError",
    "MalformedVectorLineError",
]
