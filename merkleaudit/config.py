"""
Configuration Module

Defaults shared by the library and the command-line tools, and the
``WorkloadConfig`` describing one stress-fill run.

Example:
    >>> from merkleaudit.config import WorkloadConfig
    >>> config = WorkloadConfig(seed=42, items=5, iterations=3, writes=10)
    >>> config.total_writes
    30
"""

import random
from dataclasses import asdict, dataclass
from typing import Optional

DEFAULT_PREFIX = './tree'

DEFAULT_ITEMS = 100
DEFAULT_ITERATIONS = 1000
DEFAULT_WRITES = 100

# Small files so that even modest runs spread over several backing files.
DEFAULT_MAX_FILE_SIZE = 2 * 1024 * 1024


def random_seed() -> int:
    """Pick a fresh 32-bit seed for runs started without one."""
    return random.SystemRandom().randint(0, 0x7FFFFFFF)


@dataclass
class WorkloadConfig:
    """Parameters of a stress-fill run.

    Attributes:
        seed: Generator seed; drawn at random when None.
        items: Size of the key pool.
        iterations: Number of committed transactions.
        writes: Inserts per transaction.
    """

    seed: Optional[int] = None
    items: int = DEFAULT_ITEMS
    iterations: int = DEFAULT_ITERATIONS
    writes: int = DEFAULT_WRITES
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def __post_init__(self):
        if self.seed is None:
            self.seed = random_seed()
        if self.items < 1:
            raise ValueError(f"items must be at least 1, got {self.items}")
        if self.iterations < 0:
            raise ValueError(f"iterations must not be negative, got {self.iterations}")
        if self.writes < 0:
            raise ValueError(f"writes must not be negative, got {self.writes}")
        if self.max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive, got {self.max_file_size}")

    @property
    def total_writes(self) -> int:
        return self.iterations * self.writes

    def to_dict(self) -> dict:
        return asdict(self)
