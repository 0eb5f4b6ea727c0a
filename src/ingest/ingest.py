# ingest.py
# ktree-build – Ingest subsystem: load a vector file and split it into line spans

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union


# ============================================================
# Exceptions
# ============================================================

class IngestError(Exception):
    pass


class UnreadableInputError(IngestError):
    """Input file is missing, empty, or could not be read in full."""

    def __init__(self, path: Union[str, Path], reason: str = ""):
        self.path = str(path)
        self.reason = reason
        message = f"Cannot read vector file: '{self.path}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class EmptyInputError(IngestError):
    """Input file contains no non-blank lines."""
    pass


class LineSplitError(IngestError):
    """The two splitter passes disagree on the number of lines."""
    pass


# ============================================================
# Configuration
# ============================================================

# Bytes that end a line; any run of them is a single separator
LINE_TERMINATORS = b"\r\n"

# Scanning stops at the first zero byte, as if the buffer ended there
END_OF_BUFFER = 0

_TERMINATOR_RUN = re.compile(rb"[\r\n]+")


# ============================================================
# Output Format
# ============================================================

@dataclass(frozen=True)
class LineRef:
    """
    Non-owning view of one non-blank line inside the loaded buffer.

    The line is the half-open byte span [start, end) of `buffer`. The buffer
    is never copied or modified, so every LineRef stays valid for as long as
    the caller keeps the buffer alive.
    """
    buffer: bytes
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def __bytes__(self) -> bytes:
        return self.buffer[self.start:self.end]

    def view(self) -> memoryview:
        """Zero-copy view of the line's bytes."""
        return memoryview(self.buffer)[self.start:self.end]

    @property
    def line_number(self) -> int:
        """
        1-based physical line number in the source file.

        "\\r\\n" counts as one line break, a lone "\\r" or "\\n" as one each.
        """
        head = self.buffer
        newlines = head.count(b"\n", 0, self.start)
        returns = head.count(b"\r", 0, self.start)
        pairs = head.count(b"\r\n", 0, self.start)
        return newlines + returns - pairs + 1

    def __str__(self) -> str:
        return bytes(self).decode("ascii", errors="replace")


# ============================================================
# File Loader
# ============================================================

def read_entire_file(path: Union[str, Path]) -> bytes:
    """
    Read a whole file into memory.

    The size is taken from the already-open handle (fstat), not from a
    separate stat() call, so the file cannot change between the two.

    Args:
        path: File to read

    Returns:
        The file's bytes (never empty)

    Raises:
        UnreadableInputError: File cannot be opened, is empty, or was
                              short-read
    """
    try:
        with open(path, "rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            if size == 0:
                raise UnreadableInputError(path, "file is empty")
            data = fh.read(size)
    except OSError as e:
        raise UnreadableInputError(path, e.strerror or str(e)) from e

    if len(data) != size:
        raise UnreadableInputError(path, f"read {len(data)} of {size} bytes")

    return data


# ============================================================
# Line Splitter
# ============================================================

def _content_end(buffer: bytes) -> int:
    """Index one past the last byte the splitter should look at."""
    stop = buffer.find(bytes([END_OF_BUFFER]))
    return len(buffer) if stop < 0 else stop


def count_lines(buffer: bytes) -> int:
    """
    Count non-blank logical lines in `buffer`.

    Every maximal run of '\\r'/'\\n' bytes is one separator. A leading run
    does not close a line, and a final line without a terminator still
    counts.
    """
    end = _content_end(buffer)
    if end == 0:
        return 0

    count = sum(1 for _ in _TERMINATOR_RUN.finditer(buffer, 0, end))

    if buffer[0] in LINE_TERMINATORS:
        count -= 1
    if buffer[end - 1] not in LINE_TERMINATORS:
        count += 1

    return count


def buffer_to_lines(buffer: bytes) -> List[LineRef]:
    """
    Split a buffer into an ordered list of non-blank line spans.

    Pass 1 counts the lines so the list can be sized up front; pass 2 walks
    the terminator runs recording where each line starts and ends. Blank
    lines never produce entries.

    Args:
        buffer: Raw file contents

    Returns:
        List of LineRef objects in file order

    Raises:
        LineSplitError: The two passes disagree (a splitter defect)
    """
    expected = count_lines(buffer)
    lines = [None] * expected
    end = _content_end(buffer)

    found = 0
    line_start = None
    if end > 0 and buffer[0] not in LINE_TERMINATORS:
        line_start = 0

    for run in _TERMINATOR_RUN.finditer(buffer, 0, end):
        if line_start is not None:
            if found >= expected:
                raise LineSplitError(f"Found more than the {expected} lines counted")
            lines[found] = LineRef(buffer, line_start, run.start())
            found += 1
        line_start = run.end() if run.end() < end else None

    if line_start is not None:
        if found >= expected:
            raise LineSplitError(f"Found more than the {expected} lines counted")
        lines[found] = LineRef(buffer, line_start, end)
        found += 1

    if found != expected:
        raise LineSplitError(f"Counted {expected} lines but found {found}")

    return lines


# ============================================================
# Self-check
# ============================================================

def unittest() -> None:
    """Self-check of the splitter. Raises AssertionError on failure."""
    lines = buffer_to_lines(b"a b\n\n\nc d\n")
    assert [bytes(line) for line in lines] == [b"a b", b"c d"]

    lines = buffer_to_lines(b"\r\n1 2\r\n\r\n3 4")
    assert [bytes(line) for line in lines] == [b"1 2", b"3 4"]
    assert lines[1].line_number == 4

    assert buffer_to_lines(b"\n\r\n\r") == []
    assert buffer_to_lines(b"") == []
    assert buffer_to_lines(b"x\x00y\nz") == [LineRef(b"x\x00y\nz", 0, 1)]

    # Splitting a line again does not subdivide it
    for line in buffer_to_lines(b"1 2 3\n4 5 6\n"):
        again = buffer_to_lines(bytes(line))
        assert [bytes(a) for a in again] == [bytes(line)]
