"""
Tree Generator Module

Stress-fills a tree with a reproducible workload: one key pool generated up
front, then ``iterations`` transactions of ``writes`` inserts each, every
transaction committed before the next begins.

Example:
    >>> from merkleaudit.config import WorkloadConfig
    >>> from merkleaudit.generator import run_workload
    >>> from merkleaudit.store import Tree
    >>> config = WorkloadConfig(seed=42, items=5, iterations=3, writes=10)
    >>> with Tree('./tree') as tree:
    ...     summary = run_workload(tree, config)
    >>> print(summary['root_hash'])
"""

import logging
import time

from merkleaudit.config import WorkloadConfig
from merkleaudit.rand import ByteGenerator
from merkleaudit.utils import ProgressTracker, get_process_memory_mb
from merkleaudit.workload import WorkloadSynthesizer

logger = logging.getLogger(__name__)


def run_workload(tree, config: WorkloadConfig, show_progress: bool = False) -> dict:
    """Write the workload described by ``config`` into an open tree.

    Args:
        tree: Open store with ``transaction()``.
        config: Workload parameters.
        show_progress: Draw a progress bar over iterations.

    Returns:
        Dict containing:
            - seed, items, iterations, writes: the effective parameters
            - total_writes: inserts performed
            - distinct_keys: distinct pool keys written at least once
            - max_key_reuse: most writes any single pool slot received
            - root_hash: hex root hash after the last commit
            - elapsed_seconds: wall time of the write phase
            - memory_mb: resident memory at the end of the run

    Raises:
        WriteError: If a commit fails. Earlier commits stay in place.
        ResolutionError: If a stored node on an insert path is unreadable.
    """
    synth = WorkloadSynthesizer(ByteGenerator(config.seed))

    logger.info(f"Generating items {config.items}...")
    pool = synth.key_pool(config.items)

    start = time.monotonic()
    root_hash = tree.root_hash
    tracker = ProgressTracker(config.iterations, 'Iterations', enabled=show_progress)
    try:
        for i in range(config.iterations):
            logger.debug(f"Iteration {i}...")
            txn = tree.transaction()
            for key, value in synth.writes(pool, config.writes):
                txn.insert(key, value)
            root_hash = txn.commit()
            tracker.update(1)
    finally:
        tracker.close()

    counts = pool.selection_counts()
    summary = {
        'seed': config.seed,
        'items': config.items,
        'iterations': config.iterations,
        'writes': config.writes,
        'total_writes': config.total_writes,
        'distinct_keys': pool.distinct_selected(),
        'max_key_reuse': int(counts.max()) if counts.size else 0,
        'root_hash': root_hash.hex(),
        'elapsed_seconds': time.monotonic() - start,
        'memory_mb': get_process_memory_mb(),
    }
    logger.info(f"Wrote {summary['total_writes']:,} inserts, root {summary['root_hash']}")
    return summary
