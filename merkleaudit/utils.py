"""
Utility Functions Module

This module provides common utility functions used throughout the merkleaudit
package, including formatting, logging setup and progress tracking.

Example:
    >>> from merkleaudit.utils import format_bytes, setup_logging
    >>> setup_logging('DEBUG')
    >>> print(format_bytes(1536))
    1.5 KiB (1,536 bytes)
"""

import logging
import re
import time
from pathlib import Path
from typing import Optional, Union

import psutil
from tqdm import tqdm

BYTE_UNITS = ['B', 'KiB', 'MiB', 'GiB']


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """Configure logging for merkleaudit.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file.
        format_string: Optional custom format string.

    Returns:
        Configured root logger.

    Example:
        >>> logger = setup_logging('DEBUG', 'audit.log')
        >>> logger.info("Audit started")
    """
    if format_string is None:
        format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Convert string level to int if needed
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # Console handler (stderr, stdout carries the report)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(file_handler)

    return root_logger


def format_bytes(size_bytes: int, decimals: int = 2) -> str:
    """Format a byte count with binary units.

    Sizes of 1 KiB and above also carry the exact count.

    Args:
        size_bytes: Size in bytes.
        decimals: Maximum decimal places; trailing zeros are dropped.

    Returns:
        Human-readable size string.

    Example:
        >>> format_bytes(0)
        '0 B'
        >>> format_bytes(512)
        '512 B'
        >>> format_bytes(1048576)
        '1 MiB (1,048,576 bytes)'
    """
    if size_bytes == 0:
        return '0 B'

    decimals = max(decimals, 0)
    i = 0
    while i < len(BYTE_UNITS) - 1 and abs(size_bytes) >= 1024 ** (i + 1):
        i += 1

    text = f"{size_bytes / 1024 ** i:.{decimals}f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')

    unit = BYTE_UNITS[i]
    full = '' if unit == 'B' else f" ({size_bytes:,} bytes)"
    return f"{text} {unit}{full}"


def format_duration(seconds: float, precision: int = 3) -> str:
    """Format duration to human-readable string.

    Example:
        >>> format_duration(0.001234)
        '1.234 ms'
        >>> format_duration(65.5)
        '1m 5.500s'
    """
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.{precision}f} µs"
    elif seconds < 1.0:
        return f"{seconds * 1000:.{precision}f} ms"
    elif seconds < 60:
        return f"{seconds:.{precision}f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.{precision}f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.{precision}f}s"


def parse_size_string(size_str: str) -> int:
    """Parse size string to bytes.

    Args:
        size_str: Size string like '64B', '512KB', '2MB' or a bare number.

    Returns:
        Size in bytes.

    Raises:
        ValueError: If the string is not a size.

    Example:
        >>> parse_size_string('1KB')
        1024
        >>> parse_size_string('2MiB')
        2097152
    """
    size_str = size_str.upper().strip()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*(B|KB|KIB|MB|MIB|GB|GIB)?$', size_str)
    if not match:
        raise ValueError(f"Invalid size string: {size_str}")

    value = float(match.group(1))
    unit = (match.group(2) or 'B').replace('I', '')

    multipliers = {
        'B': 1,
        'KB': 1024,
        'MB': 1024 ** 2,
        'GB': 1024 ** 3,
    }

    return int(value * multipliers[unit])


def get_process_memory_mb() -> float:
    """Resident memory of the current process in MiB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


class ProgressTracker:
    """Track progress of long-running operations.

    Example:
        >>> tracker = ProgressTracker(total=100, description="Writing")
        >>> for i in range(100):
        ...     tracker.update(1)
        >>> tracker.close()
    """

    def __init__(
        self,
        total: int,
        description: str = "",
        enabled: bool = True
    ):
        """Initialize progress tracker.

        Args:
            total: Total number of items.
            description: Progress bar description.
            enabled: Whether to draw a progress bar.
        """
        self.total = total
        self.description = description
        self.current = 0
        self.start_time = time.monotonic()
        self._pbar = tqdm(total=total, desc=description, disable=not enabled)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def update(self, n: int = 1) -> None:
        self.current += n
        self._pbar.update(n)

    def close(self) -> None:
        """Close progress tracker."""
        self._pbar.close()
        logging.getLogger(__name__).info(
            f"{self.description}: Completed in {format_duration(self.elapsed)}"
        )
