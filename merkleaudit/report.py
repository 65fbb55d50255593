"""
Report Formatting Module

Text rendering of audit results and tree dumps, plus a flat table of the
aggregates for export.

Example:
    >>> from merkleaudit.report import format_tree_stats
    >>> print(format_tree_stats(stats))
"""

import logging
from typing import Iterator, Optional

import pandas as pd

from merkleaudit.auditor import KINDS, IterItem, TotalStats, TreeStats, walk
from merkleaudit.nodes import HashRef, Internal, Leaf, Null, Pointer
from merkleaudit.utils import format_bytes

logger = logging.getLogger(__name__)

STAT_ROWS = [
    ('Total Nodes', None),
    ('Internals', 'internals'),
    ('Leaves', 'leaves'),
    ('Nulls', 'nulls'),
    ('Data', 'data'),
]


def format_total_stats(stats: TotalStats, prefix: str = '') -> str:
    """Render one aggregate as 'Name: count, Size: size' lines."""
    lines = []
    for name, kind in STAT_ROWS:
        if kind is None:
            count, size = stats.total_nodes, stats.total_size
        else:
            count, size = stats.counts[kind], stats.sizes[kind]
        lines.append(f"{prefix}{name}: {count:,}, Size: {format_bytes(size)}")
    return '\n'.join(lines)


def format_tree_stats(stats: TreeStats) -> str:
    """Render the full usage report.

    Every depth up to ``max_depth`` and every file from 1 to ``max_file`` gets
    a section, including the ones nothing was attributed to.
    """
    lines = [f"PerDepth ({stats.max_depth}):"]
    for depth in range(stats.max_depth + 1):
        lines.append(f"Depth: {depth}")
        lines.append(format_total_stats(stats.per_depth.get(depth, TotalStats()), '  '))

    lines.append('PerFile:')
    for index in range(1, stats.max_file + 1):
        lines.append(f"File: {index}")
        lines.append(format_total_stats(stats.per_file.get(index, TotalStats()), '  '))

    lines.append('Total')
    lines.append(format_total_stats(stats.total, '  '))
    lines.append(f"Resolves: {stats.resolves}, maxDepth: {stats.max_depth}")
    return '\n'.join(lines)


def format_pointer(pointer: Optional[Pointer]) -> str:
    if pointer is None:
        return ''
    return str(pointer)


def format_dump_line(item: IterItem) -> Optional[str]:
    """One dump line for a walk entry; None for unresolved references."""
    node = item.node
    indent = '  ' * item.depth

    if isinstance(node, HashRef):
        return None
    if isinstance(node, Null):
        text = 'NULL'
    elif isinstance(node, Internal):
        text = f"Internal: :{node.prefix}"
    elif isinstance(node, Leaf):
        text = f"Leaf: {node.key.hex()} -> value{format_pointer(node.value_pointer)}"
    else:
        raise TypeError(f"Unknown node type: {type(node).__name__}")

    return f"{indent}{text}{format_pointer(item.origin)}"


def dump_lines(tree) -> Iterator[str]:
    """Yield the dump of ``tree`` line by line, in walk order."""
    for item in walk(tree):
        line = format_dump_line(item)
        if line is not None:
            yield line


def stats_to_dataframe(stats: TreeStats) -> pd.DataFrame:
    """Flatten all three scopes into one table.

    Columns: scope ('total', 'depth' or 'file'), key (depth or file index,
    0 for the total), kind (one of the node kinds, 'data' or 'all'), count,
    size.
    """
    rows = []

    def add(scope: str, key: int, total: TotalStats) -> None:
        rows.append({'scope': scope, 'key': key, 'kind': 'all',
                     'count': total.total_nodes, 'size': total.total_size})
        for kind in KINDS:
            rows.append({'scope': scope, 'key': key, 'kind': kind,
                         'count': total.counts[kind], 'size': total.sizes[kind]})

    add('total', 0, stats.total)
    for depth, total in sorted(stats.per_depth.items()):
        add('depth', depth, total)
    for index, total in sorted(stats.per_file.items()):
        add('file', index, total)

    return pd.DataFrame(rows, columns=['scope', 'key', 'kind', 'count', 'size'])


def export_csv(stats: TreeStats, path: str) -> None:
    """Write ``stats_to_dataframe`` output to ``path``."""
    stats_to_dataframe(stats).to_csv(path, index=False)
    logger.info(f"Wrote usage table to {path}")
