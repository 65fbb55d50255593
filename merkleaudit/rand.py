"""
Deterministic Byte Generator Module

This module provides a seeded pseudorandom byte stream built from a 32-bit
linear congruential generator. The stream must be identical on every machine
and every run for a given seed, so all arithmetic is done on Python integers
and explicitly wrapped to signed 32 bits. The multiply is decomposed into
16-bit halves rather than relying on a native wide multiply.

Example:
    >>> from merkleaudit.rand import ByteGenerator
    >>> gen = ByteGenerator(42)
    >>> first = gen.take(8)
    >>> ByteGenerator(42).take(8) == first
    True
"""

import logging
from typing import Iterator

from merkleaudit.errors import GeneratorError

logger = logging.getLogger(__name__)

MULTIPLIER = 1103515245
INCREMENT = 12345

INT32_MASK = 0xFFFFFFFF
INT32_SIGN = 0x80000000


def to_int32(value: int) -> int:
    """Wrap an integer to a signed 32-bit value (two's complement).

    Args:
        value: Any Python integer.

    Returns:
        Integer in the range [-2**31, 2**31).

    Example:
        >>> to_int32(2**31)
        -2147483648
    """
    value &= INT32_MASK
    if value & INT32_SIGN:
        return value - (INT32_MASK + 1)
    return value


def wrap32(a: int, b: int) -> int:
    """Add two integers with signed 32-bit wraparound."""
    return to_int32(a + b)


def mul32(a: int, b: int) -> int:
    """Multiply two 32-bit integers modulo 2**32 using 16-bit lanes.

    Each operand is split into high and low 16-bit halves. The low-by-low
    product seeds the low lane and carries into the high lane; the two cross
    products only ever affect the high lane. The high-by-high product lies
    entirely above bit 32 and is dropped.

    Args:
        a: First operand (signed or unsigned 32-bit).
        b: Second operand (signed or unsigned 32-bit).

    Returns:
        Signed 32-bit product.
    """
    loa = a & 0xFFFF
    hia = (a & INT32_MASK) >> 16
    lob = b & 0xFFFF
    hib = (b & INT32_MASK) >> 16

    lor = loa * lob
    hir = lor >> 16
    lor &= 0xFFFF
    hir += loa * hib
    hir &= 0xFFFF
    hir += hia * lob
    hir &= 0xFFFF

    return to_int32((hir << 16) | lor)


def mul32_shift_add(a: int, b: int) -> int:
    """Reference shift-and-add multiply modulo 2**32.

    Slow, but independent of ``mul32``; used to verify it.
    """
    b &= INT32_MASK
    result = 0
    while b:
        if b & 1:
            result = wrap32(result, a)
        b >>= 1
        a = to_int32(a << 1)
    return result


def _upper(value: int, modulus: int) -> int:
    """Return ``(value / 65536) % modulus`` truncated toward zero.

    The remainder takes the sign of ``value``, the same as a floating-point
    remainder of a negative dividend.
    """
    remainder = (abs(value) >> 16) % modulus
    return -remainder if value < 0 else remainder


class ByteGenerator:
    """Infinite, restartable pseudorandom byte stream.

    The only state is the signed 32-bit integer ``state``. Every word costs
    three LCG rounds: the first contributes 11 bits and the next two
    contribute 10 bits each, shifted in from the right.

    Attributes:
        seed: The seed the generator was last (re)seeded with.
        state: Current LCG state.

    Example:
        >>> gen = ByteGenerator(1)
        >>> b = gen.next_byte()
        >>> 0 <= b <= 255
        True
    """

    def __init__(self, seed: int = 0):
        self.seed = 0
        self.state = 0
        self.reseed(seed)

    def reseed(self, seed: int) -> None:
        """Restart the stream from ``seed``.

        Raises:
            GeneratorError: If the seed is not an integer.
        """
        if isinstance(seed, bool) or not isinstance(seed, int):
            raise GeneratorError(f"Seed must be an integer, got {seed!r}")
        self.seed = to_int32(seed)
        self.state = self.seed

    def _step(self) -> int:
        self.state = mul32(self.state, MULTIPLIER)
        self.state = wrap32(self.state, INCREMENT)
        return self.state

    def next_word(self) -> int:
        """Draw one signed 32-bit word (three LCG rounds)."""
        result = _upper(self._step(), 2048)

        result = to_int32(result << 10)
        result ^= _upper(self._step(), 1024)

        result = to_int32(result << 10)
        result ^= _upper(self._step(), 1024)

        return result

    def next_byte(self) -> int:
        """Draw one byte in [0, 255]."""
        return self.next_word() & 0xFF

    def take(self, n: int) -> bytes:
        """Draw ``n`` bytes in order."""
        return bytes(self.next_byte() for _ in range(n))

    def words(self) -> Iterator[int]:
        """Infinite iterator over raw words."""
        while True:
            yield self.next_word()

    def __iter__(self) -> Iterator[int]:
        while True:
            yield self.next_byte()

    def __repr__(self) -> str:
        return f"ByteGenerator(seed={self.seed}, state={self.state})"
