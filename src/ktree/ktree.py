# ktree.py
# ktree-build – K-tree subsystem: incremental clustering tree over fixed-length vectors

import io
import warnings
import numpy as np
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, List, Optional, Union
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning


# ============================================================
# Configuration
# ============================================================

# Tree order limits (branching factor)
MIN_ORDER = 2
MAX_ORDER = 1_000_000

# Vector component type
DEFAULT_DTYPE = np.float32

# Floats per allocator block
DEFAULT_BLOCK_SIZE = 64 * 1024

# KMeans parameters for node splits
DEFAULT_MAX_ITER = 100
DEFAULT_N_INIT = "auto"
DEFAULT_RANDOM_STATE = 42


# ============================================================
# Allocator
# ============================================================

class Allocator:
    """
    Arena allocator for vector storage.

    Memory is handed out as views into large numpy blocks and is never
    freed individually: every view stays valid for as long as the
    allocator is alive.
    """

    def __init__(self, block_size: int = DEFAULT_BLOCK_SIZE, dtype=DEFAULT_DTYPE):
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}")
        self.block_size = block_size
        self.dtype = np.dtype(dtype)
        self.used = 0
        self._blocks: List[np.ndarray] = []
        self._offset = 0

    def malloc(self, count: int) -> np.ndarray:
        """
        Allocate `count` zeroed components.

        Args:
            count: Number of components

        Returns:
            Writable 1-D view of length `count`
        """
        if count < 0:
            raise ValueError(f"Cannot allocate {count} components")

        if not self._blocks or self._offset + count > len(self._blocks[-1]):
            self._blocks.append(np.zeros(max(self.block_size, count), dtype=self.dtype))
            self._offset = 0

        block = self._blocks[-1]
        view = block[self._offset:self._offset + count]
        self._offset += count
        self.used += count
        return view

    @property
    def allocated(self) -> int:
        """Total components reserved across all blocks."""
        return sum(len(block) for block in self._blocks)

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def __repr__(self) -> str:
        return (
            f"Allocator(blocks={self.block_count}, used={self.used}, "
            f"allocated={self.allocated}, dtype={self.dtype})"
        )


# ============================================================
# Vector Objects
# ============================================================

class VectorObject:
    """One fixed-length vector living in allocator memory."""

    def __init__(self, vector: np.ndarray):
        self.vector = vector

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    def new_object(self, allocator: Allocator) -> "VectorObject":
        """Return a new zeroed object with the same dimensionality as this one."""
        return VectorObject(allocator.malloc(self.dimensions))

    def distance_squared(self, point: np.ndarray) -> float:
        diff = self.vector - point
        return float(np.dot(diff, diff))

    def __repr__(self) -> str:
        return f"VectorObject({self.vector.tolist()})"

    @staticmethod
    def unittest() -> None:
        """Self-check of vector objects and the allocator."""
        memory = Allocator(block_size=4)
        example = VectorObject(memory.malloc(3))

        first = example.new_object(memory)
        second = example.new_object(memory)
        assert first.dimensions == 3 and second.dimensions == 3
        assert not first.vector.any()

        first.vector[:] = [1.0, 2.0, 3.0]
        second.vector[:] = [4.0, 6.0, 3.0]
        assert second.vector.tolist() == [4.0, 6.0, 3.0]
        assert first.vector.tolist() == [1.0, 2.0, 3.0]
        assert first.distance_squared(second.vector) == 25.0

        # 3 floats per object and 4 per block: each object gets its own block
        assert memory.block_count == 3
        assert memory.used == 9


# ============================================================
# Tree Nodes
# ============================================================

@dataclass(eq=False)
class KTreeNode:
    """
    A K-tree node.

    Leaves hold vectors; internal nodes hold child nodes. `centroid` is the
    mean of every vector below this node and `count` how many there are.
    """
    leaf: bool
    centroid: np.ndarray
    count: int = 0
    vectors: List[VectorObject] = field(default_factory=list)
    children: List["KTreeNode"] = field(default_factory=list)

    @property
    def entries(self) -> list:
        return self.vectors if self.leaf else self.children

    def add(self, point: np.ndarray) -> None:
        """Fold one more vector into the running mean."""
        self.count += 1
        self.centroid += (point - self.centroid) / self.count


# ============================================================
# K-tree
# ============================================================

class KTree:
    """
    Height-balanced tree of k-means clusters.

    Vectors are inserted one at a time. Each goes down to the leaf whose
    centroid path is nearest, and any node that ends up with more than
    `order` entries is split in two by 2-means. A root split grows the tree
    by one level, so all leaves are always at the same depth.
    """

    def __init__(
        self,
        allocator: Allocator,
        order: int,
        dimensions: int,
        max_iter: int = DEFAULT_MAX_ITER,
        n_init: Union[int, str] = DEFAULT_N_INIT,
        random_state: Optional[int] = DEFAULT_RANDOM_STATE,
    ):
        if not MIN_ORDER <= order <= MAX_ORDER:
            raise ValueError(
                f"Tree order must be between {MIN_ORDER} and {MAX_ORDER:,}, got {order}"
            )
        if dimensions < 1:
            raise ValueError(f"Dimensions must be >= 1, got {dimensions}")

        self.order = order
        self.dimensions = dimensions
        self.max_iter = max_iter
        self.n_init = n_init
        self.random_state = random_state
        self.root: Optional[KTreeNode] = None
        self._size = 0
        self._example = VectorObject(allocator.malloc(dimensions))

    def __repr__(self) -> str:
        return (
            f"KTree(order={self.order}, dimensions={self.dimensions}, "
            f"vectors={len(self)}, nodes={self.node_count()}, depth={self.depth()})"
        )

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[VectorObject]:
        """Stored vectors, leaf by leaf from left to right."""
        for node in self.leaves():
            yield from node.vectors

    def get_example_object(self) -> VectorObject:
        """An object of the right dimensionality to call new_object() on."""
        return self._example

    # --------------------------------------------------------
    # Insertion
    # --------------------------------------------------------

    def push_back(self, allocator: Allocator, obj: VectorObject) -> None:
        """
        Insert a filled vector object.

        Args:
            allocator: Allocator for new node storage
            obj: Vector to insert; the tree keeps a reference to it
        """
        if obj.dimensions != self.dimensions:
            raise ValueError(
                f"Vector has {obj.dimensions} dimensions, tree expects {self.dimensions}"
            )

        point = obj.vector
        if self.root is None:
            self.root = self._new_node(allocator, leaf=True)

        path = [self.root]
        node = self.root
        while not node.leaf:
            node = min(node.children, key=lambda child: _distance_squared(child.centroid, point))
            path.append(node)

        node.vectors.append(obj)
        for visited in path:
            visited.add(point)
        self._size += 1

        # Split overfull nodes from the leaf upwards
        for level in range(len(path) - 1, -1, -1):
            node = path[level]
            if len(node.entries) <= self.order:
                break

            left, right = self._split(allocator, node)
            if level == 0:
                root = self._new_node(allocator, leaf=False)
                root.children = [left, right]
                root.count = node.count
                root.centroid[:] = node.centroid
                self.root = root
            else:
                siblings = path[level - 1].children
                at = siblings.index(node)
                siblings[at:at + 1] = [left, right]

    def _new_node(self, allocator: Allocator, leaf: bool) -> KTreeNode:
        return KTreeNode(leaf=leaf, centroid=allocator.malloc(self.dimensions))

    def _split(self, allocator: Allocator, node: KTreeNode) -> tuple[KTreeNode, KTreeNode]:
        """Divide an overfull node's entries between two new nodes."""
        entries = node.entries
        if node.leaf:
            points = np.vstack([obj.vector for obj in entries])
            weights = np.ones(len(entries))
        else:
            points = np.vstack([child.centroid for child in entries])
            weights = np.array([child.count for child in entries], dtype=float)

        labels = self._two_means(points, weights)

        halves = []
        for label in (0, 1):
            members = np.flatnonzero(labels == label)
            half = self._new_node(allocator, leaf=node.leaf)
            chosen = [entries[i] for i in members]
            if node.leaf:
                half.vectors = chosen
            else:
                half.children = chosen
            half.count = int(weights[members].sum())
            half.centroid[:] = np.average(points[members], axis=0, weights=weights[members])
            halves.append(half)

        return halves[0], halves[1]

    def _two_means(self, points: np.ndarray, weights: np.ndarray) -> np.ndarray:
        """Label each point 0 or 1; both labels are always used."""
        n = len(points)
        labels = None

        if len(np.unique(points, axis=0)) >= 2:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                kmeans = KMeans(
                    n_clusters=2,
                    n_init=self.n_init,
                    max_iter=self.max_iter,
                    random_state=self.random_state,
                )
                labels = kmeans.fit_predict(points, sample_weight=weights)

        if labels is None or labels.min() == labels.max():
            # Degenerate: identical points, split by position
            labels = np.zeros(n, dtype=int)
            labels[n // 2:] = 1

        return labels

    # --------------------------------------------------------
    # Inspection
    # --------------------------------------------------------

    def _preorder(self) -> Iterator[tuple[KTreeNode, int]]:
        """(node, parent index) pairs in pre-order; the root's parent is -1."""
        if self.root is None:
            return
        index = 0
        stack = [(self.root, -1)]
        while stack:
            node, parent = stack.pop()
            yield node, parent
            mine = index
            index += 1
            for child in reversed(node.children):
                stack.append((child, mine))

    def leaves(self) -> Iterator[KTreeNode]:
        for node, _ in self._preorder():
            if node.leaf:
                yield node

    def node_count(self) -> int:
        return sum(1 for _ in self._preorder())

    def depth(self) -> int:
        """Number of levels; 0 for an empty tree."""
        levels = 0
        node = self.root
        while node is not None:
            levels += 1
            node = None if node.leaf else node.children[0]
        return levels

    def verify(self) -> None:
        """
        Check structural invariants. Raises AssertionError on failure.

        - No node has more than `order` entries, or zero entries
        - Every leaf is at the same depth
        - Counts add up and centroids are the mean of the vectors below
        """
        if self.root is None:
            assert self._size == 0, "empty tree with nonzero size"
            return

        leaf_depths = set()

        def walk(node: KTreeNode, level: int) -> np.ndarray:
            assert 0 < len(node.entries) <= self.order, (
                f"node has {len(node.entries)} entries, order is {self.order}"
            )
            if node.leaf:
                leaf_depths.add(level)
                total = np.sum([obj.vector for obj in node.vectors], axis=0, dtype=np.float64)
                count = len(node.vectors)
            else:
                total = np.zeros(self.dimensions, dtype=np.float64)
                count = 0
                for child in node.children:
                    total += walk(child, level + 1)
                    count += child.count
            assert node.count == count, f"node count {node.count} != {count}"
            assert np.allclose(node.centroid, total / count, atol=1e-3), "stale centroid"
            return total

        walk(self.root, 1)
        assert len(leaf_depths) == 1, f"leaves at depths {sorted(leaf_depths)}"
        assert self.root.count == self._size

    # --------------------------------------------------------
    # Serialization
    # --------------------------------------------------------

    def serialize(self, stream: BinaryIO) -> None:
        """
        Write the tree to a binary stream as an .npz archive.

        Arrays:
            order, dimensions: shape (1,)
            node_parent: parent index per node in pre-order (-1 for root)
            node_leaf, node_count, node_centroid: per node
            vectors: every stored vector, leaf by leaf
            vector_node: index of the leaf holding each vector
        """
        nodes = list(self._preorder())
        vectors = []
        vector_node = []
        for index, (node, _) in enumerate(nodes):
            if node.leaf:
                for obj in node.vectors:
                    vectors.append(obj.vector)
                    vector_node.append(index)

        empty = np.empty((0, self.dimensions), dtype=self._example.vector.dtype)
        data = {
            "order": np.array([self.order]),
            "dimensions": np.array([self.dimensions]),
            "node_parent": np.array([parent for _, parent in nodes], dtype=np.int64),
            "node_leaf": np.array([node.leaf for node, _ in nodes], dtype=bool),
            "node_count": np.array([node.count for node, _ in nodes], dtype=np.int64),
            "node_centroid": np.vstack([node.centroid for node, _ in nodes]) if nodes else empty,
            "vectors": np.vstack(vectors) if vectors else empty,
            "vector_node": np.array(vector_node, dtype=np.int64),
        }
        np.savez(stream, **data)

    # --------------------------------------------------------
    # Self-check
    # --------------------------------------------------------

    @staticmethod
    def unittest() -> None:
        """Self-check of insertion, splitting and serialization."""
        for bad_order in (MIN_ORDER - 1, MAX_ORDER + 1):
            try:
                KTree(Allocator(), bad_order, 2)
            except ValueError:
                pass
            else:
                raise AssertionError(f"order {bad_order} accepted")

        memory = Allocator(block_size=256)
        tree = KTree(memory, 2, 2)
        example = tree.get_example_object()
        assert tree.depth() == 0 and len(tree) == 0

        points = [(0, 0), (10, 10), (0, 1), (10, 11), (1, 0), (11, 10), (5, 5), (5, 5), (5, 5)]
        for x, y in points:
            obj = example.new_object(memory)
            obj.vector[:] = [x, y]
            tree.push_back(memory, obj)

        assert len(tree) == len(points)
        tree.verify()
        assert tree.depth() >= 3
        stored = sorted(tuple(obj.vector.tolist()) for obj in tree)
        assert stored == sorted((float(x), float(y)) for x, y in points)
        assert np.allclose(tree.root.centroid, np.mean(points, axis=0), atol=1e-4)

        buffer = io.BytesIO()
        tree.serialize(buffer)
        buffer.seek(0)
        archive = np.load(buffer)
        assert int(archive["order"][0]) == 2
        assert archive["vectors"].shape == (len(points), 2)
        assert archive["node_parent"][0] == -1
        assert len(archive["node_leaf"]) == tree.node_count()


def _distance_squared(a: np.ndarray, b: np.ndarray) -> float:
    diff = a - b
    return float(np.dot(diff, diff))
