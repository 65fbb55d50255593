#!/usr/bin/env python3
"""
Unit tests for the deterministic byte generator.
"""

import math
import sys
import unittest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from merkleaudit.errors import GeneratorError
from merkleaudit.rand import (
    INCREMENT,
    MULTIPLIER,
    ByteGenerator,
    mul32,
    mul32_shift_add,
    to_int32,
    wrap32,
)


def reference_bytes(seed: int, n: int) -> list:
    """Independent model of the generator using a wide multiply and float remainders."""
    state = to_int32(seed)
    out = []

    def step():
        nonlocal state
        state = to_int32(state * MULTIPLIER + INCREMENT)
        return state

    for _ in range(n):
        result = int(math.fmod(step() / 65536, 2048))
        result = to_int32(result << 10) ^ int(math.fmod(step() / 65536, 1024))
        result = to_int32(result << 10) ^ int(math.fmod(step() / 65536, 1024))
        out.append(result & 0xFF)
    return out


class TestInt32Helpers(unittest.TestCase):
    """Tests for 32-bit wrapping arithmetic."""

    def test_to_int32_wraps(self):
        """Test two's-complement wrapping."""
        self.assertEqual(to_int32(2 ** 31), -2 ** 31)
        self.assertEqual(to_int32(2 ** 32 + 5), 5)
        self.assertEqual(to_int32(-1), -1)
        self.assertEqual(to_int32(0xFFFFFFFF), -1)

    def test_wrap32_overflow(self):
        """Test that addition wraps at 32 bits."""
        self.assertEqual(wrap32(2 ** 31 - 1, 1), -2 ** 31)
        self.assertEqual(wrap32(-2 ** 31, -1), 2 ** 31 - 1)

    def test_mul32_matches_wide_multiply(self):
        """Test lane multiplication against a wide multiply."""
        values = [0, 1, -1, 12345, -740551042, 2 ** 31 - 1, -2 ** 31,
                  0xFFFF, 0x10000, 0xDEADBEEF, MULTIPLIER]
        for a in values:
            for b in values:
                self.assertEqual(mul32(a, b), to_int32(a * b), (a, b))

    def test_mul32_matches_shift_add(self):
        """Test lane multiplication against shift-and-add."""
        for a in [3, -7, 0x7FFF1234, -123456789]:
            self.assertEqual(mul32(a, MULTIPLIER), mul32_shift_add(a, MULTIPLIER))


class TestByteGenerator(unittest.TestCase):
    """Tests for ByteGenerator."""

    def test_known_states_from_zero(self):
        """The first two LCG states from seed 0 are fixed."""
        gen = ByteGenerator(0)
        self.assertEqual(gen._step(), 12345)
        self.assertEqual(gen._step(), -740551042)

    def test_matches_reference_model(self):
        """Test the byte stream against a floating-point model."""
        for seed in [0, 1, 42, -1, 2 ** 31 - 1, -2 ** 31, 987654321]:
            gen = ByteGenerator(seed)
            self.assertEqual(list(gen.take(500)), reference_bytes(seed, 500), seed)

    def test_determinism(self):
        """Two fresh generators with the same seed agree."""
        for seed in [0, 7, 42, 31337]:
            self.assertEqual(ByteGenerator(seed).take(1000), ByteGenerator(seed).take(1000))

    def test_different_seeds_differ(self):
        """Test that different seeds give different streams."""
        self.assertNotEqual(ByteGenerator(1).take(64), ByteGenerator(2).take(64))

    def test_byte_range(self):
        """Test that bytes stay in 0..255."""
        gen = ByteGenerator(42)
        for _ in range(2000):
            b = gen.next_byte()
            self.assertGreaterEqual(b, 0)
            self.assertLessEqual(b, 255)

    def test_three_rounds_per_byte(self):
        """Every byte advances the LCG exactly three times."""
        gen = ByteGenerator(99)
        manual = ByteGenerator(99)
        gen.next_byte()
        for _ in range(3):
            manual._step()
        self.assertEqual(gen.state, manual.state)

    def test_reseed_restarts_stream(self):
        """Test that reseeding restarts the stream."""
        gen = ByteGenerator(5)
        first = gen.take(32)
        gen.take(100)
        gen.reseed(5)
        self.assertEqual(gen.take(32), first)

    def test_seed_wraps_to_int32(self):
        """Test that large seeds wrap to 32 bits."""
        self.assertEqual(ByteGenerator(2 ** 32 + 42).take(16), ByteGenerator(42).take(16))

    def test_non_integer_seed_rejected(self):
        """Test that non-integer seeds are rejected."""
        with self.assertRaises(GeneratorError):
            ByteGenerator("42")
        with self.assertRaises(GeneratorError):
            ByteGenerator(1.5)

    def test_iteration_matches_next_byte(self):
        """Test that iteration yields the same bytes as next_byte."""
        it = iter(ByteGenerator(3))
        gen = ByteGenerator(3)
        for _ in range(50):
            self.assertEqual(next(it), gen.next_byte())

    def test_word_low_byte_is_byte(self):
        """Test that a byte is the low byte of a word."""
        words = ByteGenerator(11).words()
        gen = ByteGenerator(11)
        for _ in range(50):
            self.assertEqual(next(words) & 0xFF, gen.next_byte())


if __name__ == '__main__':
    unittest.main()
