"""
Tree Nodes Module

Node variants and their on-disk encoding for the reference store. A node
reference is one of four frozen dataclasses:

    - Null: empty subtree
    - Internal: branch with a skipped bit prefix and two children
    - Leaf: full 256-bit key plus a pointer to its value bytes
    - HashRef: lazy reference to a stored node, resolved on demand

Consumers dispatch on the closed set with ``isinstance``; there is no shared
base class.

Encoding (little-endian integers):
    Pointer   <H file_index> <I offset> <I size>             10 bytes
    Internal  0x01 <prefix> <child> <child>
    Leaf      0x02 <key:32> <value_hash:32> <value pointer>
    child     0x00 for Null, or 0x01 <pointer> <hash:32>
    prefix    <H bit count> <ceil(bits / 8) bytes, big-endian>

Null is never written; its encoded size is ``NULL_SIZE``.

Example:
    >>> from merkleaudit.nodes import Leaf, Pointer, hash_digest, encode_node
    >>> leaf = Leaf(key=hash_digest(b'k'), value_hash=hash_digest(b'v'))
    >>> len(encode_node(leaf, Pointer(1, 0, 1)))
    75
"""

import struct
from dataclasses import dataclass
from typing import Optional, Union

from Crypto.Hash import BLAKE2b

from merkleaudit.errors import ResolutionError

HASH_SIZE = 32
KEY_BITS = HASH_SIZE * 8
NULL_SIZE = 0
ZERO_HASH = b'\x00' * HASH_SIZE

TAG_NULL = 0x00
TAG_INTERNAL = 0x01
TAG_LEAF = 0x02

_POINTER = struct.Struct('<HII')
_PREFIX_SIZE = struct.Struct('<H')

POINTER_SIZE = _POINTER.size
MAX_FILE_INDEX = 0xFFFF


def hash_digest(data: bytes) -> bytes:
    """BLAKE2b-256 digest used for keys and node hashes."""
    h = BLAKE2b.new(digest_bits=KEY_BITS)
    h.update(data)
    return h.digest()


@dataclass(frozen=True)
class Pointer:
    """Physical location of a stored region.

    Attributes:
        file_index: Backing file number, starting at 1.
        offset: Byte offset within the file.
        size: Region length in bytes.
    """

    file_index: int
    offset: int
    size: int

    def encode(self) -> bytes:
        return _POINTER.pack(self.file_index, self.offset, self.size)

    @classmethod
    def decode(cls, data: bytes, pos: int = 0) -> 'Pointer':
        return cls(*_POINTER.unpack_from(data, pos))

    def __str__(self) -> str:
        return f"@file-{self.file_index}:{self.offset}({self.size})"


@dataclass(frozen=True)
class Prefix:
    """Run of bits skipped at an internal node, most significant bit first."""

    size: int
    bits: int = 0

    @classmethod
    def from_key(cls, key: int, depth: int, size: int) -> 'Prefix':
        """Take ``size`` bits of ``key`` starting at bit ``depth``."""
        if size == 0:
            return cls(0, 0)
        shift = KEY_BITS - depth - size
        return cls(size, (key >> shift) & ((1 << size) - 1))

    def common_bits(self, key: int, depth: int) -> int:
        """Number of leading bits this prefix shares with ``key`` at ``depth``."""
        other = Prefix.from_key(key, depth, self.size)
        return self.size - (self.bits ^ other.bits).bit_length()

    def head(self, n: int) -> 'Prefix':
        """First ``n`` bits."""
        return Prefix(n, self.bits >> (self.size - n))

    def tail(self, n: int) -> 'Prefix':
        """Last ``n`` bits."""
        return Prefix(n, self.bits & ((1 << n) - 1))

    def encode(self) -> bytes:
        length = (self.size + 7) // 8
        return _PREFIX_SIZE.pack(self.size) + self.bits.to_bytes(length, 'big')

    @classmethod
    def decode(cls, data: bytes, pos: int = 0) -> tuple:
        (size,) = _PREFIX_SIZE.unpack_from(data, pos)
        pos += _PREFIX_SIZE.size
        length = (size + 7) // 8
        raw = data[pos:pos + length]
        if len(raw) != length:
            raise ValueError("truncated prefix")
        return cls(size, int.from_bytes(raw, 'big')), pos + length

    def __str__(self) -> str:
        if self.size == 0:
            return ''
        return format(self.bits, f'0{self.size}b')


@dataclass(frozen=True)
class Null:
    """Empty subtree."""


@dataclass(frozen=True)
class HashRef:
    """Lazy reference to a stored node."""

    pointer: Pointer
    hash: bytes


@dataclass(frozen=True)
class Leaf:
    """Key/value leaf.

    ``value`` is only set for leaves created by an open transaction;
    ``value_pointer`` is only set once the value has been written.
    """

    key: bytes
    value_hash: bytes
    value_pointer: Optional[Pointer] = None
    value: Optional[bytes] = None


@dataclass(frozen=True)
class Internal:
    """Branch node. ``left`` holds keys with a 0 at the branch bit."""

    prefix: Prefix
    left: 'NodeRef'
    right: 'NodeRef'


NodeRef = Union[Null, Internal, Leaf, HashRef]

NULL = Null()


def key_to_int(key: bytes) -> int:
    return int.from_bytes(key, 'big')


def get_bit(key: int, index: int) -> int:
    """Bit ``index`` of a 256-bit key, counted from the most significant."""
    return (key >> (KEY_BITS - 1 - index)) & 1


def leaf_hash(key: bytes, value_hash: bytes) -> bytes:
    return hash_digest(bytes([TAG_NULL]) + key + value_hash)


def internal_hash(prefix: Prefix, left_hash: bytes, right_hash: bytes) -> bytes:
    return hash_digest(bytes([TAG_INTERNAL]) + prefix.encode() + left_hash + right_hash)


def ref_hash(node: Union[Null, HashRef]) -> bytes:
    if isinstance(node, Null):
        return ZERO_HASH
    return node.hash


def _encode_child(node: NodeRef) -> bytes:
    if isinstance(node, Null):
        return bytes([TAG_NULL])
    if isinstance(node, HashRef):
        return bytes([TAG_INTERNAL]) + node.pointer.encode() + node.hash
    raise TypeError(f"Child must be stored before its parent: {type(node).__name__}")


def encode_node(node: NodeRef, value_pointer: Optional[Pointer] = None) -> bytes:
    """Encode an internal node or leaf.

    Internal children must already be ``Null`` or ``HashRef``. For a leaf the
    value pointer is taken from ``value_pointer`` when given.

    Raises:
        TypeError: For ``Null`` or ``HashRef`` nodes, which are never encoded.
    """
    if isinstance(node, Internal):
        return (bytes([TAG_INTERNAL]) + node.prefix.encode()
                + _encode_child(node.left) + _encode_child(node.right))
    if isinstance(node, Leaf):
        vptr = value_pointer or node.value_pointer
        if vptr is None:
            raise TypeError("Leaf value must be stored before the leaf")
        return bytes([TAG_LEAF]) + node.key + node.value_hash + vptr.encode()
    raise TypeError(f"Cannot encode {type(node).__name__}")


def node_hash(node: NodeRef) -> bytes:
    """Hash of a node whose children are ``Null`` or ``HashRef``."""
    if isinstance(node, (Null, HashRef)):
        return ref_hash(node)
    if isinstance(node, Leaf):
        return leaf_hash(node.key, node.value_hash)
    return internal_hash(node.prefix, ref_hash(node.left), ref_hash(node.right))


def _decode_child(data: bytes, pos: int) -> tuple:
    tag = data[pos]
    pos += 1
    if tag == TAG_NULL:
        return NULL, pos
    if tag != TAG_INTERNAL:
        raise ValueError(f"bad child tag {tag}")
    pointer = Pointer.decode(data, pos)
    pos += POINTER_SIZE
    digest = data[pos:pos + HASH_SIZE]
    if len(digest) != HASH_SIZE:
        raise ValueError("truncated child hash")
    return HashRef(pointer, digest), pos + HASH_SIZE


def decode_node(data: bytes, expected_hash: Optional[bytes] = None) -> NodeRef:
    """Decode a stored node, checking its hash when ``expected_hash`` is given.

    Raises:
        ResolutionError: If the bytes are malformed or the hash differs.
    """
    try:
        if not data:
            raise ValueError("empty region")
        tag = data[0]
        if tag == TAG_INTERNAL:
            prefix, pos = Prefix.decode(data, 1)
            left, pos = _decode_child(data, pos)
            right, pos = _decode_child(data, pos)
            node = Internal(prefix, left, right)
        elif tag == TAG_LEAF:
            end = 1 + 2 * HASH_SIZE
            if len(data) < end + POINTER_SIZE:
                raise ValueError("truncated leaf")
            node = Leaf(
                key=data[1:1 + HASH_SIZE],
                value_hash=data[1 + HASH_SIZE:end],
                value_pointer=Pointer.decode(data, end),
            )
            pos = end + POINTER_SIZE
        else:
            raise ValueError(f"unknown node tag {tag}")
    except (ValueError, IndexError, struct.error) as e:
        raise ResolutionError(f"Corrupt node encoding: {e}") from e

    if pos != len(data):
        raise ResolutionError(f"Trailing bytes in node encoding ({len(data) - pos})")

    if expected_hash is not None and node_hash(node) != expected_hash:
        raise ResolutionError("Node hash mismatch")

    return node
