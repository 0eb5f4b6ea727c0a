#!/usr/bin/env python3
"""
main.py
ktree-build – Main orchestrator

Builds a K-tree from a text file of vectors and writes it to disk.
Runs all stages sequentially: load → split → sniff → parse → insert → serialize

Usage:
    python main.py build <in_file> <tree_order> <out_file>
    python main.py unittest

Input is ASCII text, one vector per line, components separated by
whitespace. Blank lines are ignored. The first line fixes the number of
components every other line must have.

Examples:
    python main.py build vectors.txt 20 vectors.ktree.npz
    python main.py --quiet build vectors.txt 1000 out.npz
    python main.py unittest
"""

import argparse
import os
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

# Import all subsystems
import ingest
import vectors
from ingest import LineRef, IngestError, EmptyInputError, read_entire_file, buffer_to_lines
from vectors import VectorParseError, sniff_dimensions, parse_vectors
from ktree import (
    KTree,
    Allocator,
    VectorObject,
    MIN_ORDER,
    MAX_ORDER,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_MAX_ITER,
    DEFAULT_N_INIT,
    DEFAULT_RANDOM_STATE,
)


# ============================================================
# Exceptions
# ============================================================

class UsageError(Exception):
    pass


# ============================================================
# Configuration
# ============================================================

@dataclass
class BuildConfig:
    """Configuration for a build."""
    in_file: str
    tree_order: int
    out_file: str

    # Reporting
    verbose: bool = True

    # Node split settings
    split_max_iter: int = DEFAULT_MAX_ITER
    split_n_init: str = DEFAULT_N_INIT
    random_state: Optional[int] = DEFAULT_RANDOM_STATE

    # Allocator settings
    block_size: int = DEFAULT_BLOCK_SIZE

    def validate(self) -> None:
        if not MIN_ORDER <= self.tree_order <= MAX_ORDER:
            raise UsageError(f"Tree order must be between {MIN_ORDER} and {MAX_ORDER:,}")


# ============================================================
# Build Statistics
# ============================================================

@dataclass
class BuildStats:
    """Statistics collected during a build."""
    # Stage timings
    load_time: float = 0.0
    split_time: float = 0.0
    parse_time: float = 0.0
    insert_time: float = 0.0
    serialize_time: float = 0.0
    total_time: float = 0.0

    # Stage outputs
    bytes_read: int = 0
    lines: int = 0
    dimensions: int = 0
    vectors_inserted: int = 0
    nodes: int = 0
    depth: int = 0
    output_bytes: int = 0

    def print_summary(self):
        """Print a formatted summary of build statistics."""
        print("\n" + "=" * 70)
        print("BUILD SUMMARY")
        print("=" * 70)

        print("\nStage Timings:")
        print(f"  Load:       {self.load_time:>8.2f}s  ({self.bytes_read:,} bytes)")
        print(f"  Split:      {self.split_time:>8.2f}s  ({self.lines:,} lines)")
        print(f"  Parse:      {self.parse_time:>8.2f}s  ({self.dimensions}D vectors)")
        print(f"  Insert:     {self.insert_time:>8.2f}s  ({self.vectors_inserted:,} vectors)")
        print(f"  Serialize:  {self.serialize_time:>8.2f}s  ({self.output_bytes:,} bytes)")
        print(f"  {'─' * 40}")
        print(f"  Total:      {self.total_time:>8.2f}s")

        print(f"\nTree: {self.nodes:,} nodes, depth {self.depth}")
        print("\nBuild Status: ✓ Complete")
        print("=" * 70)


def _banner(title: str, config: BuildConfig) -> None:
    if config.verbose:
        print("\n" + "=" * 70)
        print(title)
        print("=" * 70)


# ============================================================
# Build Stages
# ============================================================

def stage_load(config: BuildConfig) -> tuple[bytes, float]:
    """
    Stage 1: Read the whole input file.

    Returns:
        Tuple of (buffer, elapsed seconds)
    """
    _banner("STAGE 1: LOAD", config)
    start_time = time.time()

    buffer = read_entire_file(config.in_file)

    elapsed = time.time() - start_time
    if config.verbose:
        print(f"\n✓ Read {len(buffer):,} bytes from {config.in_file} in {elapsed:.2f}s")

    return buffer, elapsed


def stage_split(buffer: bytes, config: BuildConfig) -> tuple[List[LineRef], float]:
    """
    Stage 2: Split the buffer into non-blank lines.

    Returns:
        Tuple of (lines, elapsed seconds)
    """
    _banner("STAGE 2: SPLIT", config)
    start_time = time.time()

    lines = buffer_to_lines(buffer)
    if not lines:
        raise EmptyInputError(f"Vector file has no non-blank lines: '{config.in_file}'")

    elapsed = time.time() - start_time
    if config.verbose:
        print(f"\n✓ Found {len(lines):,} lines in {elapsed:.2f}s")

    return lines, elapsed


def stage_parse(
    lines: List[LineRef],
    config: BuildConfig,
    memory: Allocator,
) -> tuple[KTree, List[VectorObject], float]:
    """
    Stage 3: Fix the dimensionality, create the tree and parse every line.

    The tree is created here because its example object is the factory for
    vector slots. Nothing is inserted yet.

    Returns:
        Tuple of (empty tree, vector list, elapsed seconds)
    """
    _banner("STAGE 3: PARSE", config)
    start_time = time.time()

    dimensions = sniff_dimensions(lines)
    if config.verbose:
        print(f"\nDimensionality: {dimensions} (from line {lines[0].line_number})")

    tree = KTree(
        memory,
        config.tree_order,
        dimensions,
        max_iter=config.split_max_iter,
        n_init=config.split_n_init,
        random_state=config.random_state,
    )
    vector_list = parse_vectors(lines, dimensions, tree.get_example_object(), memory)

    elapsed = time.time() - start_time
    if config.verbose:
        print(f"✓ Parsed {len(vector_list):,} vectors in {elapsed:.2f}s")

    return tree, vector_list, elapsed


def stage_insert(
    tree: KTree,
    vector_list: List[VectorObject],
    config: BuildConfig,
    memory: Allocator,
) -> float:
    """
    Stage 4: Insert every parsed vector, in file order.

    Returns:
        Elapsed seconds
    """
    _banner("STAGE 4: INSERT", config)
    start_time = time.time()

    if config.verbose:
        print(f"\nInserting {len(vector_list):,} vectors (tree order {config.tree_order})...")

    for vector in vector_list:
        tree.push_back(memory, vector)

    elapsed = time.time() - start_time
    if config.verbose:
        print(f"✓ Built tree in {elapsed:.2f}s")
        print(f"  Nodes: {tree.node_count():,}")
        print(f"  Depth: {tree.depth()}")
        print(f"  Memory: {memory}")

    return elapsed


def stage_serialize(tree: KTree, config: BuildConfig) -> tuple[int, float]:
    """
    Stage 5: Write the tree to the output file.

    The tree is streamed to a temporary file next to the target, which is
    moved into place only once it is complete.

    Returns:
        Tuple of (bytes written, elapsed seconds)
    """
    _banner("STAGE 5: SERIALIZE", config)
    start_time = time.time()

    out_path = Path(config.out_file)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{out_path.name}.", suffix=".tmp", dir=out_path.parent
    )
    try:
        with os.fdopen(fd, "wb") as outfile:
            tree.serialize(outfile)
        # mkstemp creates 0600; give the tree the same mode a plain open() would
        umask = os.umask(0)
        os.umask(umask)
        os.chmod(tmp_name, 0o666 & ~umask)
        os.replace(tmp_name, out_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    size = out_path.stat().st_size
    elapsed = time.time() - start_time
    if config.verbose:
        print(f"\n✓ Wrote {size:,} bytes to {out_path} in {elapsed:.2f}s")

    return size, elapsed


# ============================================================
# Commands
# ============================================================

def build(config: BuildConfig) -> BuildStats:
    """
    Build a K-tree from the input file and write it to the output file.

    Args:
        config: Build configuration

    Returns:
        BuildStats object with execution statistics

    Raises:
        UsageError: Tree order out of range
        IngestError: Input file unreadable or empty
        VectorParseError: A line is not a valid vector
    """
    config.validate()

    stats = BuildStats()
    build_start = time.time()
    memory = Allocator(block_size=config.block_size)

    if config.verbose:
        print("\n" + "╔" + "═" * 68 + "╗")
        print("║" + " " * 24 + "KTREE-BUILD" + " " * 33 + "║")
        print("╚" + "═" * 68 + "╝")

    buffer, stats.load_time = stage_load(config)
    stats.bytes_read = len(buffer)

    lines, stats.split_time = stage_split(buffer, config)
    stats.lines = len(lines)

    tree, vector_list, stats.parse_time = stage_parse(lines, config, memory)
    stats.dimensions = tree.dimensions

    stats.insert_time = stage_insert(tree, vector_list, config, memory)
    stats.vectors_inserted = len(tree)
    stats.nodes = tree.node_count()
    stats.depth = tree.depth()

    stats.output_bytes, stats.serialize_time = stage_serialize(tree, config)

    stats.total_time = time.time() - build_start
    if config.verbose:
        stats.print_summary()

    return stats


SELF_CHECKS = [
    ("ingest", ingest.unittest),
    ("vectors", vectors.unittest),
    ("VectorObject", VectorObject.unittest),
    ("KTree", KTree.unittest),
]


def unittest() -> int:
    """
    Run every component's self-check.

    Returns:
        0 if all passed, 1 otherwise
    """
    failures = 0
    for name, check in SELF_CHECKS:
        try:
            check()
            print(f"✓ {name}")
        except Exception as e:
            failures += 1
            print(f"✗ {name}: {str(e) or type(e).__name__}")

    if failures:
        print(f"\n{failures} of {len(SELF_CHECKS)} self-checks failed")
        return 1

    print(f"\n✓ All {len(SELF_CHECKS)} self-checks passed")
    return 0


def usage(prog: str) -> int:
    print(f"Usage:{prog} <[build | unittest]> <in_file> <tree_order> <outfile>")
    return 0


def parse_tree_order(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise UsageError(f"Tree order must be between {MIN_ORDER} and {MAX_ORDER:,}") from None


# ============================================================
# CLI Interface
# ============================================================

def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ktree-build - Build a K-tree from a text file of vectors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s build vectors.txt 20 vectors.ktree.npz
  %(prog)s --quiet build vectors.txt 1000 out.npz
  %(prog)s unittest
        """
    )

    parser.add_argument(
        "command",
        nargs="?",
        help="'build' or 'unittest'"
    )
    parser.add_argument(
        "operands",
        nargs="*",
        help="<in_file> <tree_order> <out_file>"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_false",
        dest="verbose",
        help="Only print diagnostics"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=DEFAULT_RANDOM_STATE,
        help=f"Random seed for node splits (default: {DEFAULT_RANDOM_STATE})"
    )
    parser.add_argument(
        "--split-max-iter",
        type=int,
        default=DEFAULT_MAX_ITER,
        help=f"Maximum k-means iterations per node split (default: {DEFAULT_MAX_ITER})"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with CLI argument parsing."""
    parser = make_parser()
    args = parser.parse_args(argv)

    # A lone command runs the self-checks, whatever it is
    if args.command is not None and not args.operands:
        return unittest()

    if args.command is None or len(args.operands) != 3:
        return usage(parser.prog)

    if args.command == "unittest":
        return unittest()

    if args.command != "build":
        return usage(parser.prog)

    in_file, tree_order, out_file = args.operands
    try:
        config = BuildConfig(
            in_file=in_file,
            tree_order=parse_tree_order(tree_order),
            out_file=out_file,
            verbose=args.verbose,
            split_max_iter=args.split_max_iter,
            random_state=args.seed,
        )
        build(config)
    except (UsageError, IngestError, VectorParseError) as e:
        print(e)
        sys.exit(1)
    except OSError as e:
        print(f"Cannot write tree file: '{out_file}' ({e.strerror or e})")
        sys.exit(1)

    return 0


if __name__ == "__main__":
    sys.exit(main())
