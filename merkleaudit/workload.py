"""
Workload Synthesizer Module

Turns the deterministic byte stream into tree writes: random-length keys
hashed to a 32-byte digest, random-length values, and key selection from a
fixed pool. Selecting from a small pool means keys are overwritten again and
again, which is the churn a stress fill is meant to produce.

Every length is itself one drawn byte, so keys and values are 0 to 255 bytes
before hashing.

Example:
    >>> from merkleaudit.rand import ByteGenerator
    >>> from merkleaudit.workload import WorkloadSynthesizer
    >>> synth = WorkloadSynthesizer(ByteGenerator(42))
    >>> pool = synth.key_pool(5)
    >>> key, value = next(synth.writes(pool, 1))
"""

import logging
from typing import Callable, Iterator, Optional

import numpy as np

from merkleaudit.errors import GeneratorError
from merkleaudit.nodes import hash_digest
from merkleaudit.rand import ByteGenerator

logger = logging.getLogger(__name__)


class KeyPool:
    """Fixed set of pre-generated keys with byte-driven selection.

    Attributes:
        keys: Keys in generation order (duplicates are kept).
    """

    def __init__(self, keys: list[bytes], generator: ByteGenerator):
        if not keys:
            raise GeneratorError("Key pool must not be empty")
        self.keys = keys
        self._generator = generator
        self._counts = np.zeros(len(keys), dtype=np.int64)

    def __len__(self) -> int:
        return len(self.keys)

    def pick_index(self) -> int:
        """Draw one byte and reduce it modulo the pool size."""
        index = self._generator.next_byte() % len(self.keys)
        self._counts[index] += 1
        return index

    def pick(self) -> bytes:
        return self.keys[self.pick_index()]

    def selection_counts(self) -> np.ndarray:
        """How many times each pool slot has been picked."""
        return self._counts.copy()

    def distinct_selected(self) -> int:
        """Number of distinct keys picked so far."""
        return len({self.keys[i] for i in np.flatnonzero(self._counts)})


class WorkloadSynthesizer:
    """Produces keys, values and write streams from a ``ByteGenerator``.

    Args:
        generator: Source of bytes; consumed strictly in call order.
        digest: Key derivation function. Defaults to the store's BLAKE2b-256.
    """

    def __init__(
        self,
        generator: ByteGenerator,
        digest: Optional[Callable[[bytes], bytes]] = None
    ):
        self.generator = generator
        self.digest = digest or hash_digest

    def random_bytes(self, n: int) -> bytes:
        return self.generator.take(n)

    def random_length_bytes(self) -> bytes:
        """Draw a length byte, then that many bytes."""
        n = self.generator.next_byte()
        return self.random_bytes(n)

    def random_key(self) -> bytes:
        return self.digest(self.random_length_bytes())

    def random_value(self) -> bytes:
        return self.random_length_bytes()

    def key_pool(self, n: int) -> KeyPool:
        """Pre-generate ``n`` keys.

        Raises:
            GeneratorError: If ``n`` is less than 1.
        """
        if n < 1:
            raise GeneratorError(f"Key pool size must be at least 1, got {n}")
        logger.debug(f"Generating {n} keys")
        keys = [self.random_key() for _ in range(n)]
        return KeyPool(keys, self.generator)

    def writes(self, pool: KeyPool, count: int) -> Iterator[tuple[bytes, bytes]]:
        """Yield ``count`` (key, value) pairs; the key is drawn before its value."""
        for _ in range(count):
            key = pool.pick()
            value = self.random_value()
            yield key, value
