#!/usr/bin/env python3
"""
Unit tests for the file-backed tree store.
"""

import json
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from merkleaudit.errors import ResolutionError, StoreMissingError, WriteError
from merkleaudit.nodes import NULL, ZERO_HASH, HashRef, Internal, hash_digest
from merkleaudit.rand import ByteGenerator
from merkleaudit.store import META_FILE, Tree
from merkleaudit.workload import WorkloadSynthesizer


def make_key(n: int) -> bytes:
    return hash_digest(n.to_bytes(4, 'big'))


class StoreTestCase(unittest.TestCase):
    """Base class providing a temporary store directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.prefix = Path(self.temp_dir) / 'tree'

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestTreeOpen(StoreTestCase):
    """Tests for opening and closing stores."""

    def test_create_empty(self):
        """Test that a new store starts empty."""
        with Tree(self.prefix) as tree:
            self.assertIs(tree.root, NULL)
            self.assertEqual(tree.root_hash, ZERO_HASH)
        self.assertTrue(self.prefix.is_dir())

    def test_missing_store(self):
        """Test that opening a missing store fails."""
        with self.assertRaises(StoreMissingError) as ctx:
            Tree(self.prefix, create=False).open()
        self.assertEqual(ctx.exception.operation, 'open')
        self.assertIn('Tree does not exist', str(ctx.exception))

    def test_path_is_file(self):
        """Test that a file in place of the store fails."""
        self.prefix.write_text('not a tree')
        with self.assertRaises(StoreMissingError):
            Tree(self.prefix).open()

    def test_corrupt_meta(self):
        """Test that unreadable metadata fails to open."""
        self.prefix.mkdir()
        (self.prefix / META_FILE).write_text('{not json')
        with self.assertRaises(ResolutionError):
            Tree(self.prefix).open()

    def test_root_requires_open(self):
        """Test that the root needs an open store."""
        with self.assertRaises(RuntimeError):
            Tree(self.prefix).root

    def test_invalid_max_file_size(self):
        """Test that a zero file size limit is rejected."""
        with self.assertRaises(ValueError):
            Tree(self.prefix, max_file_size=0)


class TestTransactions(StoreTestCase):
    """Tests for inserts and commits."""

    def test_insert_and_get(self):
        """Test that inserted values can be read back."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            for i in range(50):
                txn.insert(make_key(i), f"value-{i}".encode())
            txn.commit()

            for i in range(50):
                self.assertEqual(tree.get(make_key(i)), f"value-{i}".encode())
            self.assertIsNone(tree.get(make_key(999)))

    def test_commit_persists(self):
        """Test that a commit survives reopening."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(1), b'one')
            root_hash = txn.commit()

        with Tree(self.prefix, create=False) as tree:
            self.assertEqual(tree.root_hash, root_hash)
            self.assertIsInstance(tree.root, HashRef)
            self.assertEqual(tree.get(make_key(1)), b'one')

    def test_uncommitted_not_visible(self):
        """Test that uncommitted inserts are not visible."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(1), b'one')
            txn.commit()
            txn = tree.transaction()
            txn.insert(make_key(2), b'two')
            self.assertIsNone(tree.get(make_key(2)))

        with Tree(self.prefix) as tree:
            self.assertIsNone(tree.get(make_key(2)))
            self.assertEqual(tree.get(make_key(1)), b'one')

    def test_overwrite(self):
        """Test that the last write to a key wins."""
        with Tree(self.prefix) as tree:
            for value in [b'a', b'b', b'']:
                txn = tree.transaction()
                txn.insert(make_key(3), value)
                txn.commit()
            self.assertEqual(tree.get(make_key(3)), b'')

    def test_same_value_keeps_root(self):
        """Test that rewriting an equal value keeps the root."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(1), b'x')
            txn.insert(make_key(2), b'y')
            first = txn.commit()
            root = tree.root

            txn = tree.transaction()
            txn.insert(make_key(1), b'x')
            self.assertEqual(txn.commit(), first)
            self.assertEqual(tree.root, root)

    def test_root_hash_independent_of_order(self):
        """Test that insert order does not change the root hash."""
        keys = [make_key(i) for i in range(40)]
        hashes = []
        for name, order in [('a', keys), ('b', list(reversed(keys)))]:
            with Tree(Path(self.temp_dir) / name) as tree:
                txn = tree.transaction()
                for key in order:
                    txn.insert(key, key[:4])
                hashes.append(txn.commit())
        self.assertEqual(hashes[0], hashes[1])

    def test_root_is_internal_after_two_keys(self):
        """Test that two keys give an internal root."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(1), b'x')
            txn.insert(make_key(2), b'y')
            txn.commit()
            self.assertIsInstance(tree.resolve(tree.root), Internal)

    def test_split_keeps_stored_leaf(self):
        """Test that a leaf already on disk keeps its pointer when a sibling splits it."""
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(1), b'one')
            txn.commit()
            first = tree.root
            size_before = tree._files.size

            txn = tree.transaction()
            txn.insert(make_key(2), b'two')
            txn.commit()
            root = tree.resolve(tree.root)
            self.assertIn(first, (root.left, root.right))

            # Only the new value, the new leaf and the new root were written.
            written = tree._files.size - size_before
            self.assertEqual(written, len(b'two') + first.pointer.size + tree.root.pointer.size)
            self.assertEqual(tree.get(make_key(1)), b'one')
            self.assertEqual(tree.get(make_key(2)), b'two')

    def test_bad_key(self):
        """Test that short keys are rejected."""
        with Tree(self.prefix) as tree:
            with self.assertRaises(ValueError):
                tree.transaction().insert(b'short', b'v')

    def test_synthesized_workload(self):
        """Test a generated workload reads back correctly."""
        synth = WorkloadSynthesizer(ByteGenerator(42))
        pool = synth.key_pool(30)
        expected = {}
        with Tree(self.prefix) as tree:
            for _ in range(4):
                txn = tree.transaction()
                for key, value in synth.writes(pool, 25):
                    txn.insert(key, value)
                    expected[key] = value
                txn.commit()
            for key, value in expected.items():
                self.assertEqual(tree.get(key), value)

    def test_file_rollover(self):
        """Test that writes roll over to new files."""
        with Tree(self.prefix, max_file_size=512) as tree:
            txn = tree.transaction()
            for i in range(60):
                txn.insert(make_key(i), bytes(100))
            txn.commit()
            self.assertGreater(len(tree._files.existing_indices()), 1)
            self.assertEqual(tree.get(make_key(59)), bytes(100))


class TestFailures(StoreTestCase):
    """Tests for resolution and write failures."""

    def _fill(self, count: int = 20) -> bytes:
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            for i in range(count):
                txn.insert(make_key(i), b'payload')
            return txn.commit()

    def test_truncated_files(self):
        """Test that truncated files fail to resolve."""
        self._fill()
        for path in self.prefix.iterdir():
            if path.name.isdigit():
                path.write_bytes(b'')
        with Tree(self.prefix, create=False) as tree:
            with self.assertRaises(ResolutionError) as ctx:
                tree.resolve(tree.root)
            self.assertEqual(ctx.exception.operation, 'resolve')

    def test_missing_file(self):
        """Test that missing files fail to resolve."""
        self._fill()
        for path in self.prefix.iterdir():
            if path.name.isdigit():
                path.unlink()
        with Tree(self.prefix, create=False) as tree:
            with self.assertRaises(ResolutionError):
                tree.get(make_key(1))

    def test_flipped_byte(self):
        """Test that corrupted node bytes fail to resolve."""
        self._fill()
        meta = json.loads((self.prefix / META_FILE).read_text())['root']
        path = self.prefix / str(meta['file_index']).zfill(10)
        data = bytearray(path.read_bytes())
        data[meta['offset'] + meta['size'] - 1] ^= 0xFF
        path.write_bytes(bytes(data))
        with Tree(self.prefix, create=False) as tree:
            with self.assertRaises(ResolutionError):
                tree.resolve(tree.root)

    def test_commit_failure_keeps_previous_root(self):
        """Test that a failed commit keeps the previous root."""
        previous = self._fill()
        with Tree(self.prefix) as tree:
            txn = tree.transaction()
            txn.insert(make_key(100), b'new')
            with patch.object(tree._files, 'write', side_effect=OSError('disk full')):
                with self.assertRaises(WriteError) as ctx:
                    txn.commit()
            self.assertEqual(ctx.exception.operation, 'commit')
            self.assertEqual(tree.root_hash, previous)

        with Tree(self.prefix) as tree:
            self.assertEqual(tree.root_hash, previous)
            self.assertIsNone(tree.get(make_key(100)))


if __name__ == '__main__':
    unittest.main()
