# ktree/__init__.py
# ktree-build – K-tree subsystem

from .ktree import (
    # Tree
    KTree,
    KTreeNode,

    # Storage
    Allocator,
    VectorObject,

    # Constants
    MIN_ORDER,
    MAX_ORDER,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_MAX_ITER,
    DEFAULT_N_INIT,
    DEFAULT_RANDOM_STATE,
)

__all__ = [
    # Tree
    "KTree",
    "KTreeNode",

    # Storage
    "Allocator",
    "VectorObject",

    # Constants
    "MIN_ORDER",
    "MAX_ORDER",
    "DEFAULT_BLOCK_SIZE",
    "DEFAULT_MAX_ITER",
    "DEFAULT_N_INIT",
    "DEFAULT_RANDOM_STATE",
]
