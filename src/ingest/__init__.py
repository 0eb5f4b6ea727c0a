"""
Ingest subsystem for ktree-build.

Purpose: Load a vector file into memory and split it into non-blank lines
without copying or modifying the loaded bytes.

Responsibilities:
- Read the whole file in one go, failing on missing/empty/short reads
- Split on runs of '\\r'/'\\n', dropping blank lines
- Output: List of LineRef spans over the loaded buffer

Non-responsibilities:
- No tokenizing
- No float parsing
"""

from .ingest import (
    read_entire_file,
    buffer_to_lines,
    count_lines,
    unittest,
    LineRef,
    IngestError,
    UnreadableInputError,
    EmptyInputError,
    LineSplitError,
)

__all__ = [
    "read_entire_file",
    "buffer_to_lines",
    "count_lines",
    "unittest",
    "LineRef",
    "IngestError",
    "UnreadableInputError",
    "EmptyInputError",
    "LineSplitError",
]
