"""
Tree Store Module

A compact file-backed binary Merkle radix tree. This is the storage engine the
workload generator writes into and the auditor reads from; both only use the
small surface below:

    - Tree.open() / Tree.close() (or ``with Tree(...) as tree``)
    - Tree.root
    - Tree.resolve(hash_ref)
    - Tree.transaction() -> Transaction.insert(key, value) / .commit()

Nodes and values are appended to numbered backing files inside the store
directory (``0000000001``, ``0000000002``, ...). A new file is started once
the current one would exceed ``max_file_size``. The committed root lives in
``meta.json``, which is replaced atomically after all node data is synced, so
an interrupted or failed commit leaves the previous root in place.

Example:
    >>> from merkleaudit.store import Tree
    >>> with Tree('./tree') as tree:
    ...     txn = tree.transaction()
    ...     txn.insert(key, b'value')
    ...     txn.commit()
"""

import json
import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional, Union

from merkleaudit.config import DEFAULT_MAX_FILE_SIZE, DEFAULT_PREFIX
from merkleaudit.errors import ResolutionError, StoreMissingError, WriteError
from merkleaudit.nodes import (
    HASH_SIZE,
    KEY_BITS,
    MAX_FILE_INDEX,
    NULL,
    HashRef,
    Internal,
    Leaf,
    NodeRef,
    Null,
    Pointer,
    Prefix,
    decode_node,
    encode_node,
    get_bit,
    hash_digest,
    key_to_int,
    leaf_hash,
    node_hash,
    ref_hash,
)

logger = logging.getLogger(__name__)

META_FILE = 'meta.json'
META_VERSION = 1
FILE_NAME_WIDTH = 10


class FileSet:
    """Append-only numbered backing files of one store directory."""

    def __init__(self, directory: Path, max_file_size: int):
        self.directory = directory
        self.max_file_size = max_file_size
        self.index = 1
        self.size = 0
        self._writer: Optional[BinaryIO] = None
        self._readers: dict[int, BinaryIO] = {}

    def path_for(self, index: int) -> Path:
        return self.directory / str(index).zfill(FILE_NAME_WIDTH)

    def existing_indices(self) -> list[int]:
        """Indices of backing files present on disk, ascending."""
        indices = []
        for entry in self.directory.iterdir():
            if entry.is_file() and entry.name.isdigit() and len(entry.name) == FILE_NAME_WIDTH:
                indices.append(int(entry.name))
        return sorted(indices)

    def open(self) -> None:
        indices = self.existing_indices()
        if indices:
            self.index = indices[-1]
            self.size = self.path_for(self.index).stat().st_size
        else:
            self.index = 1
            self.size = 0

    def read(self, pointer: Pointer) -> bytes:
        """Read the region ``pointer`` addresses.

        Raises:
            ResolutionError: If the file is missing or the region is short.
        """
        if pointer.size == 0:
            return b''
        if self._writer is not None and pointer.file_index == self.index:
            self._writer.flush()
        try:
            handle = self._readers.get(pointer.file_index)
            if handle is None:
                handle = open(self.path_for(pointer.file_index), 'rb')
                self._readers[pointer.file_index] = handle
            handle.seek(pointer.offset)
            data = handle.read(pointer.size)
        except OSError as e:
            raise ResolutionError(f"Cannot read {pointer}: {e}") from e

        if len(data) != pointer.size:
            raise ResolutionError(
                f"Short read at {pointer}: got {len(data)} of {pointer.size} bytes"
            )
        return data

    def write(self, data: bytes) -> Pointer:
        """Append ``data``, rolling to a new file when the current one is full."""
        if data and self.size > 0 and self.size + len(data) > self.max_file_size:
            self._roll()

        if self._writer is None:
            self._writer = open(self.path_for(self.index), 'ab')

        pointer = Pointer(self.index, self.size, len(data))
        if data:
            self._writer.write(data)
            self.size += len(data)
        return pointer

    def _roll(self) -> None:
        if self.index >= MAX_FILE_INDEX:
            raise OSError(f"Backing file limit reached ({MAX_FILE_INDEX})")
        self.sync()
        self._close_writer()
        self.index += 1
        self.size = 0
        logger.debug(f"Starting backing file {self.path_for(self.index).name}")

    def sync(self) -> None:
        if self._writer is not None:
            self._writer.flush()
            os.fsync(self._writer.fileno())

    def _close_writer(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def close(self) -> None:
        self._close_writer()
        for handle in self._readers.values():
            handle.close()
        self._readers.clear()


class Tree:
    """File-backed Merkle radix tree over 256-bit keys.

    Attributes:
        prefix: Store directory.
        max_file_size: Size at which a new backing file is started.
        create: Whether ``open`` may create a missing store directory.

    Example:
        >>> tree = Tree('./tree', create=False)
        >>> tree.open()
        >>> root = tree.root
        >>> tree.close()
    """

    def __init__(
        self,
        prefix: Union[str, Path] = DEFAULT_PREFIX,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        create: bool = True
    ):
        if max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive, got {max_file_size}")
        self.prefix = Path(prefix)
        self.max_file_size = max_file_size
        self.create = create
        self._files = FileSet(self.prefix, max_file_size)
        self._root: NodeRef = NULL
        self._opened = False

    def open(self) -> None:
        """Open the store, creating it if allowed.

        Raises:
            StoreMissingError: If the store does not exist and ``create`` is
                False, or the path is not a directory.
            WriteError: If the directory cannot be created.
            ResolutionError: If ``meta.json`` is unreadable.
        """
        if not self.prefix.exists():
            if not self.create:
                raise StoreMissingError(f"Tree does not exist: {self.prefix}")
            try:
                self.prefix.mkdir(parents=True)
            except OSError as e:
                raise WriteError(f"Cannot create {self.prefix}: {e}", operation='open') from e
            logger.info(f"Created tree at {self.prefix}")
        elif not self.prefix.is_dir():
            raise StoreMissingError(f"Not a tree directory: {self.prefix}")

        self._files.open()
        self._root = self._read_meta()
        self._opened = True
        logger.debug(f"Opened tree {self.prefix} (root {self.root_hash.hex()})")

    def close(self) -> None:
        self._files.close()
        self._opened = False

    def __enter__(self) -> 'Tree':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def root(self) -> NodeRef:
        """Committed root: ``Null`` for an empty tree, otherwise a ``HashRef``."""
        self._check_open()
        return self._root

    @property
    def root_hash(self) -> bytes:
        return ref_hash(self._root)

    def _check_open(self) -> None:
        if not self._opened:
            raise RuntimeError("Tree is not open")

    def _meta_path(self) -> Path:
        return self.prefix / META_FILE

    def _read_meta(self) -> NodeRef:
        path = self._meta_path()
        if not path.exists():
            return NULL
        try:
            meta = json.loads(path.read_text())
            root = meta['root']
            if root is None:
                return NULL
            pointer = Pointer(root['file_index'], root['offset'], root['size'])
            digest = bytes.fromhex(root['hash'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ResolutionError(f"Unreadable {path}: {e}", operation='open') from e
        if len(digest) != HASH_SIZE:
            raise ResolutionError(f"Bad root hash length in {path}", operation='open')
        return HashRef(pointer, digest)

    def _write_meta(self, root: NodeRef) -> None:
        if isinstance(root, HashRef):
            entry = {
                'file_index': root.pointer.file_index,
                'offset': root.pointer.offset,
                'size': root.pointer.size,
                'hash': root.hash.hex(),
            }
        else:
            entry = None

        path = self._meta_path()
        tmp = path.with_name(path.name + '.tmp')
        with open(tmp, 'w') as f:
            json.dump({'version': META_VERSION, 'root': entry}, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def resolve(self, ref: HashRef) -> NodeRef:
        """Load the node a hash reference points at.

        Raises:
            ResolutionError: If the region is missing, truncated or corrupt.
        """
        self._check_open()
        if not isinstance(ref, HashRef):
            raise TypeError(f"Expected HashRef, got {type(ref).__name__}")
        data = self._files.read(ref.pointer)
        try:
            return decode_node(data, ref.hash)
        except ResolutionError as e:
            raise ResolutionError(f"{e.args[0]} at {ref.pointer}") from e

    def read_value(self, leaf: Leaf) -> bytes:
        """Return the value bytes of a leaf.

        Raises:
            ResolutionError: If the value region is missing or its hash differs.
        """
        if leaf.value is not None:
            return leaf.value
        data = self._files.read(leaf.value_pointer)
        if hash_digest(data) != leaf.value_hash:
            raise ResolutionError(f"Value hash mismatch at {leaf.value_pointer}")
        return data

    def get(self, key: bytes) -> Optional[bytes]:
        """Look up the committed value for ``key``; None when absent."""
        _check_key(key)
        k = key_to_int(key)
        node = self.root
        depth = 0

        while True:
            if isinstance(node, HashRef):
                node = self.resolve(node)
            elif isinstance(node, Null):
                return None
            elif isinstance(node, Leaf):
                if node.key != key:
                    return None
                return self.read_value(node)
            else:
                prefix = node.prefix
                if prefix.common_bits(k, depth) != prefix.size:
                    return None
                depth += prefix.size
                node = node.right if get_bit(k, depth) else node.left
                depth += 1

    def transaction(self) -> 'Transaction':
        self._check_open()
        return Transaction(self)

    def _store(self, node: NodeRef) -> NodeRef:
        """Write every in-memory node below ``node``; return its reference."""
        if isinstance(node, (Null, HashRef)):
            return node

        if isinstance(node, Leaf):
            vptr = node.value_pointer
            if vptr is None:
                vptr = self._files.write(node.value)
            pointer = self._files.write(encode_node(node, vptr))
            return HashRef(pointer, leaf_hash(node.key, node.value_hash))

        stored = Internal(node.prefix, self._store(node.left), self._store(node.right))
        pointer = self._files.write(encode_node(stored))
        return HashRef(pointer, node_hash(stored))

    def _commit(self, root: NodeRef) -> NodeRef:
        self._check_open()
        try:
            ref = self._store(root)
            self._files.sync()
            self._write_meta(ref)
        except OSError as e:
            raise WriteError(f"Commit failed: {e}", operation='commit') from e
        self._root = ref
        return ref


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != HASH_SIZE:
        raise ValueError(f"Key must be {HASH_SIZE} bytes")


class Transaction:
    """A batch of inserts applied to an in-memory copy of the root.

    Nothing is visible to the tree until ``commit`` succeeds.
    """

    def __init__(self, tree: Tree):
        self.tree = tree
        self.root: NodeRef = tree.root
        self.inserts = 0

    def insert(self, key: bytes, value: bytes) -> None:
        """Insert or overwrite ``key``.

        Raises:
            ValueError: If the key is not a 32-byte digest.
            ResolutionError: If a stored node on the key's path is unreadable.
        """
        _check_key(key)
        key = bytes(key)
        value = bytes(value)
        leaf = Leaf(key=key, value_hash=hash_digest(value), value=value)
        self.root = self._insert(self.root, key_to_int(key), leaf, 0)
        self.inserts += 1

    def _insert(
        self,
        node: NodeRef,
        k: int,
        leaf: Leaf,
        depth: int,
        ref: Optional[HashRef] = None
    ) -> NodeRef:
        """Return the subtree with ``leaf`` inserted.

        ``ref`` is the reference ``node`` was resolved from. An unchanged
        stored leaf is embedded by its reference so it is not written again.
        """
        if isinstance(node, Null):
            return leaf

        if isinstance(node, HashRef):
            resolved = self.tree.resolve(node)
            result = self._insert(resolved, k, leaf, depth, node)
            return node if result is resolved else result

        if isinstance(node, Leaf):
            if node.key == leaf.key:
                return node if node.value_hash == leaf.value_hash else leaf
            remaining = KEY_BITS - depth
            diff = (k ^ key_to_int(node.key)) & ((1 << remaining) - 1)
            common = remaining - diff.bit_length()
            prefix = Prefix.from_key(k, depth, common)
            sibling = node if ref is None else ref
            if get_bit(k, depth + common):
                return Internal(prefix, sibling, leaf)
            return Internal(prefix, leaf, sibling)

        prefix = node.prefix
        common = prefix.common_bits(k, depth)

        if common == prefix.size:
            depth += prefix.size
            if get_bit(k, depth):
                right = self._insert(node.right, k, leaf, depth + 1)
                return node if right is node.right else Internal(prefix, node.left, right)
            left = self._insert(node.left, k, leaf, depth + 1)
            return node if left is node.left else Internal(prefix, left, node.right)

        # Split the prefix at the first differing bit.
        child = Internal(prefix.tail(prefix.size - common - 1), node.left, node.right)
        upper = prefix.head(common)
        if get_bit(k, depth + common):
            return Internal(upper, child, leaf)
        return Internal(upper, leaf, child)

    def commit(self) -> bytes:
        """Write all pending nodes and publish the new root.

        Returns:
            The new root hash.

        Raises:
            WriteError: On I/O failure; the previous root stays current.
        """
        ref = self.tree._commit(self.root)
        self.root = ref
        logger.debug(f"Committed {self.inserts} inserts, root {ref_hash(ref).hex()}")
        self.inserts = 0
        return ref_hash(ref)
