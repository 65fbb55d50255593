"""
Command-Line Tools Module

Entry points for the three tools:

    merkleaudit-generate [PREFIX] [--seed=N] [--items=N] [--iters=N] [--writes=N]
    merkleaudit-usage [PREFIX] [--csv PATH]
    merkleaudit-dump [PREFIX]

PREFIX defaults to ./tree. Each tool exits 0 on success and 1 with an error
message on stderr on any failure; nothing is printed as a partial report.
"""

import argparse
import logging
import sys
from typing import Optional

from merkleaudit.auditor import audit_tree
from merkleaudit.config import (
    DEFAULT_ITEMS,
    DEFAULT_ITERATIONS,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_PREFIX,
    DEFAULT_WRITES,
    WorkloadConfig,
)
from merkleaudit.errors import MerkleAuditError
from merkleaudit.generator import run_workload
from merkleaudit.report import dump_lines, export_csv, format_tree_stats
from merkleaudit.store import Tree
from merkleaudit.utils import format_bytes, format_duration, parse_size_string, setup_logging

logger = logging.getLogger(__name__)


def _base_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        'prefix', nargs='?', default=DEFAULT_PREFIX,
        help=f'Tree directory (default: {DEFAULT_PREFIX})'
    )
    parser.add_argument(
        '--verbose', '-v', action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '--log-file', type=str, default=None,
        help='Also write logs to this file'
    )
    return parser


def _setup(args: argparse.Namespace) -> None:
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)


def _fail(error: Exception) -> int:
    logger.debug("Run aborted", exc_info=True)
    print(f"Error: {error}", file=sys.stderr)
    return 1


def generate_main(argv: Optional[list[str]] = None) -> int:
    """Stress-fill a tree with a seeded workload."""
    parser = _base_parser('Fill a Merkle tree store with a reproducible workload')
    parser.add_argument(
        '--seed', type=int, default=None,
        help='Generator seed (default: random)'
    )
    parser.add_argument(
        '--items', type=int, default=DEFAULT_ITEMS,
        help=f'Size of the key pool (default: {DEFAULT_ITEMS})'
    )
    parser.add_argument(
        '--iters', type=int, default=DEFAULT_ITERATIONS,
        help=f'Number of transactions (default: {DEFAULT_ITERATIONS})'
    )
    parser.add_argument(
        '--writes', type=int, default=DEFAULT_WRITES,
        help=f'Writes per transaction (default: {DEFAULT_WRITES})'
    )
    parser.add_argument(
        '--max-file-size', type=parse_size_string, default=DEFAULT_MAX_FILE_SIZE,
        help='Backing file size limit, e.g. 2MB (default: 2MB)'
    )
    parser.add_argument(
        '--progress', action='store_true',
        help='Show a progress bar'
    )
    args = parser.parse_args(argv)
    _setup(args)

    try:
        config = WorkloadConfig(
            seed=args.seed,
            items=args.items,
            iterations=args.iters,
            writes=args.writes,
            max_file_size=args.max_file_size,
        )
    except ValueError as e:
        return _fail(e)

    print(f"Seed: {config.seed}")
    print(f"Total: {config.items}")
    print(f"Iterations: {config.iterations}")
    print(f"Writes Per Iteration: {config.writes}")

    try:
        with Tree(args.prefix, max_file_size=config.max_file_size) as tree:
            summary = run_workload(tree, config, show_progress=args.progress)
    except (MerkleAuditError, ValueError) as e:
        return _fail(e)

    print(f"Root: {summary['root_hash']}")
    print(f"Distinct keys written: {summary['distinct_keys']} "
          f"(max reuse {summary['max_key_reuse']})")
    print(f"Elapsed: {format_duration(summary['elapsed_seconds'])}, "
          f"Memory: {format_bytes(int(summary['memory_mb'] * 1024 * 1024))}")
    return 0


def usage_main(argv: Optional[list[str]] = None) -> int:
    """Print per-depth, per-file and total storage usage of a tree."""
    parser = _base_parser('Report storage usage of a Merkle tree store')
    parser.add_argument(
        '--csv', type=str, default=None,
        help='Also write the usage table to this CSV file'
    )
    args = parser.parse_args(argv)
    _setup(args)

    try:
        with Tree(args.prefix, create=False) as tree:
            stats = audit_tree(tree)
        if args.csv:
            export_csv(stats, args.csv)
    except (MerkleAuditError, OSError) as e:
        return _fail(e)

    print(format_tree_stats(stats))
    return 0


def dump_main(argv: Optional[list[str]] = None) -> int:
    """Print every node of a tree, indented by depth."""
    parser = _base_parser('Dump the nodes of a Merkle tree store')
    args = parser.parse_args(argv)
    _setup(args)

    try:
        with Tree(args.prefix, create=False) as tree:
            lines = list(dump_lines(tree))
    except MerkleAuditError as e:
        return _fail(e)

    for line in lines:
        print(line)
    return 0

