"""
merkleaudit - Stress-fill and storage audit tools for a Merkle tree store

This package writes reproducible workloads into a file-backed binary Merkle
radix tree and reports where the tree's bytes live: per depth, per backing
file and in total.

Main Components:
    - ByteGenerator: Deterministic seeded byte stream (32-bit LCG)
    - WorkloadSynthesizer: Keys, values and key-pool selection
    - Tree: File-backed tree store with transactional commits
    - audit_tree / TreeStats: Single-pass three-way usage audit
    - format_tree_stats: Text rendering of an audit

Example:
    >>> from merkleaudit import Tree, audit_tree, format_tree_stats
    >>> with Tree('./tree', create=False) as tree:
    ...     stats = audit_tree(tree)
    >>> print(format_tree_stats(stats))
"""

__version__ = "1.0.0"
__author__ = "merkleaudit Team"

from merkleaudit.auditor import TotalStats, TreeStats, audit_tree, walk
from merkleaudit.config import WorkloadConfig
from merkleaudit.errors import (
    GeneratorError,
    MerkleAuditError,
    ResolutionError,
    StoreMissingError,
    WriteError,
)
from merkleaudit.generator import run_workload
from merkleaudit.rand import ByteGenerator, mul32
from merkleaudit.report import format_tree_stats, stats_to_dataframe
from merkleaudit.store import Transaction, Tree
from merkleaudit.utils import format_bytes, setup_logging
from merkleaudit.workload import KeyPool, WorkloadSynthesizer

__all__ = [
    # Classes
    "ByteGenerator",
    "WorkloadSynthesizer",
    "KeyPool",
    "Tree",
    "Transaction",
    "TotalStats",
    "TreeStats",
    "WorkloadConfig",
    # Errors
    "MerkleAuditError",
    "GeneratorError",
    "ResolutionError",
    "WriteError",
    "StoreMissingError",
    # Functions
    "audit_tree",
    "walk",
    "run_workload",
    "mul32",
    "format_tree_stats",
    "stats_to_dataframe",
    "format_bytes",
    "setup_logging",
    # Metadata
    "__version__",
    "__author__",
]
