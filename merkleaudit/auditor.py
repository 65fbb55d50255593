"""
Tree Usage Auditor Module

Walks a stored tree from its root and folds every node's physical footprint
into three tables at once: a global total, one bucket per traversal depth and
one bucket per backing file.

The walk uses an explicit stack instead of recursion, so arbitrarily deep
trees never hit the interpreter's recursion limit. Resolving a ``HashRef`` is
the only point where the walk touches the disk, and only one resolution is
in flight at a time.

Example:
    >>> from merkleaudit.store import Tree
    >>> from merkleaudit.auditor import audit_tree
    >>> with Tree('./tree', create=False) as tree:
    ...     stats = audit_tree(tree)
    >>> print(stats.total.total_nodes, stats.resolves)
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from merkleaudit.nodes import HashRef, Internal, Leaf, NodeRef, Null, Pointer

logger = logging.getLogger(__name__)

KINDS = ('internals', 'leaves', 'nulls', 'data')


@dataclass(frozen=True)
class IterItem:
    """One pending stack entry.

    ``origin`` is the pointer of the hash reference the node was resolved
    from, or None for nodes that were never behind a reference.
    """

    node: NodeRef
    depth: int
    origin: Optional[Pointer] = None


def walk(tree, root: Optional[NodeRef] = None) -> Iterator[IterItem]:
    """Depth-first walk yielding every popped stack entry.

    ``HashRef`` entries are yielded before they are resolved; the resolved
    node follows at the same depth with the reference's pointer as origin.
    Right children are visited before left ones.

    Args:
        tree: Anything with ``root`` and ``resolve(ref)``.
        root: Start node; defaults to ``tree.root``.

    Raises:
        ResolutionError: Propagated from ``tree.resolve``; the walk stops.
    """
    stack = [IterItem(tree.root if root is None else root, 0, None)]

    while stack:
        item = stack.pop()
        yield item

        node = item.node
        if isinstance(node, (Null, Leaf)):
            continue

        if isinstance(node, Internal):
            depth = item.depth + node.prefix.size + 1
            stack.append(IterItem(node.left, depth, None))
            stack.append(IterItem(node.right, depth, None))
        elif isinstance(node, HashRef):
            resolved = tree.resolve(node)
            stack.append(IterItem(resolved, item.depth, node.pointer))
        else:
            raise TypeError(f"Unknown node type: {type(node).__name__}")


class TotalStats:
    """Counts and byte sizes per node kind for one aggregate scope.

    ``total_nodes`` covers internals, leaves and nulls. ``total_size`` covers
    those plus the ``data`` bucket of leaf values.
    """

    def __init__(self):
        self.total_nodes = 0
        self.total_size = 0
        self.counts = {kind: 0 for kind in KINDS}
        self.sizes = {kind: 0 for kind in KINDS}

    def _add_node(self, kind: str, size: int) -> None:
        self.counts[kind] += 1
        self.sizes[kind] += size
        self.total_nodes += 1
        self.total_size += size

    def add_null(self, size: int) -> None:
        self._add_node('nulls', size)

    def add_internal(self, size: int) -> None:
        self._add_node('internals', size)

    def add_leaf(self, size: int) -> None:
        self._add_node('leaves', size)

    def add_data(self, size: int) -> None:
        self.counts['data'] += 1
        self.sizes['data'] += size
        self.total_size += size

    def to_dict(self) -> dict:
        return {
            'total_nodes': self.total_nodes,
            'total_size': self.total_size,
            'counts': dict(self.counts),
            'sizes': dict(self.sizes),
        }

    def __eq__(self, other) -> bool:
        if not isinstance(other, TotalStats):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"TotalStats(nodes={self.total_nodes}, size={self.total_size})"


class TreeStats:
    """The three aggregate tables of one audit plus walk counters.

    Attributes:
        resolves: Hash references resolved during the walk.
        total: Global aggregate.
        per_depth: Aggregate per traversal depth (0 at the root).
        per_file: Aggregate per backing file index.
        max_depth: Deepest depth seen.
        max_file: Highest file index seen.
    """

    def __init__(self):
        self.resolves = 0
        self.total = TotalStats()
        self.per_depth: dict[int, TotalStats] = {}
        self.per_file: dict[int, TotalStats] = {}
        self.max_depth = 0
        self.max_file = 0

    def _depth_bucket(self, depth: int) -> TotalStats:
        if depth > self.max_depth:
            self.max_depth = depth
        return self.per_depth.setdefault(depth, TotalStats())

    def _file_bucket(self, file_index: int) -> TotalStats:
        if file_index > self.max_file:
            self.max_file = file_index
        return self.per_file.setdefault(file_index, TotalStats())

    def record(self, item: IterItem) -> None:
        """Fold one walk entry into all scopes it belongs to.

        A node's own size is its origin pointer's size; nodes without an
        origin have no stored encoding of their own and count with size 0
        in the global and per-depth scopes only. Leaf value bytes are
        attributed to the file holding the value, which can differ from the
        file holding the leaf.
        """
        node = item.node

        if isinstance(node, HashRef):
            self.resolves += 1
            return

        scopes = [self.total, self._depth_bucket(item.depth)]
        size = 0
        if item.origin is not None:
            size = item.origin.size
            scopes.append(self._file_bucket(item.origin.file_index))

        if isinstance(node, Null):
            for scope in scopes:
                scope.add_null(size)
        elif isinstance(node, Internal):
            for scope in scopes:
                scope.add_internal(size)
        elif isinstance(node, Leaf):
            for scope in scopes:
                scope.add_leaf(size)
            vptr = node.value_pointer
            if vptr is not None:
                for scope in (self.total, self._depth_bucket(item.depth),
                              self._file_bucket(vptr.file_index)):
                    scope.add_data(vptr.size)
        else:
            raise TypeError(f"Unknown node type: {type(node).__name__}")

    def to_dict(self) -> dict:
        return {
            'resolves': self.resolves,
            'max_depth': self.max_depth,
            'max_file': self.max_file,
            'total': self.total.to_dict(),
            'per_depth': {d: s.to_dict() for d, s in sorted(self.per_depth.items())},
            'per_file': {f: s.to_dict() for f, s in sorted(self.per_file.items())},
        }


def audit_tree(tree, stats: Optional[TreeStats] = None) -> TreeStats:
    """Walk ``tree`` once and return its usage statistics.

    Args:
        tree: Anything with ``root`` and ``resolve(ref)``.
        stats: Aggregate to fill; a fresh one is created when None.

    Returns:
        The filled ``TreeStats``.

    Raises:
        ResolutionError: If any reference cannot be resolved. No partial
            result is returned.
    """
    if stats is None:
        stats = TreeStats()

    for item in walk(tree):
        stats.record(item)

    logger.info(
        f"Audited {stats.total.total_nodes:,} nodes, "
        f"{stats.resolves:,} resolves, max depth {stats.max_depth}"
    )
    return stats
