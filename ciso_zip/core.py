#!/usr/bin/env python3
"""
CISO-Zip: Container Header & Index
==================================

On-disk metadata for the CISO (.cso) compressed image format.

File Format: .cso
- Magic: CISO
- 24-byte fixed header
- Block-offset index (block_count + 1 entries)
- Block payloads (raw DEFLATE or plain)

License: MIT
"""

import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Tuple

import numpy as np


# ============================================================================
# File Format Constants
# ============================================================================

CISO_MAGIC = b'CISO'
CISO_VERSION = 1
CISO_HEADER_SIZE = 24

DEFAULT_BLOCK_SIZE = 0x800  # one ISO9660 sector
DEFAULT_ALIGN = 0
MAX_ALIGN = 31

PLAIN_FLAG = 0x80000000
OFFSET_MASK = 0x7FFFFFFF

# Binary layout (little-endian):
#   magic(4) header_size(u32) total_bytes(u64) block_size(u32)
#   version(u8) align(u8) reserved(2)
_HEADER_STRUCT = struct.Struct('<4sIQIBB2s')
_INDEX_DTYPE = np.dtype('<u4')
_INDEX_READ_CHUNK = 1024 * 1024


# ============================================================================
# Errors
# ============================================================================

class CisoError(ValueError):
    """Base class for all container errors."""


class FormatError(CisoError):
    """Bad magic, truncated header or malformed index."""


class GeometryError(CisoError):
    """Unusable block size, alignment or offset range."""


class DecompressError(CisoError):
    """Corrupt block payload or unexpected decompressed length."""


# ============================================================================
# Index Entries
# ============================================================================

def is_plain(entry: int) -> bool:
    """True if the block behind this index entry is stored uncompressed."""
    return (int(entry) & PLAIN_FLAG) != 0


def entry_offset(entry: int, align: int) -> int:
    """
    Recover the on-disk byte offset stored in an index entry.

    The plain flag is masked off first; only the remaining 31-bit field
    is shifted by the alignment exponent.
    """
    position = int(entry) & OFFSET_MASK
    return position << align


def make_entry(position: int, align: int, plain: bool = False) -> int:
    """
    Pack an aligned byte offset (and plain flag) into an index entry.

    Raises:
        GeometryError: If the position is not aligned or does not fit
            in 31 bits after shifting
    """
    if position & ((1 << align) - 1):
        raise GeometryError(f"Offset {position} is not aligned to 2**{align}")
    shifted = position >> align
    if shifted > OFFSET_MASK:
        raise GeometryError(
            f"Offset {position} too large for index (align={align}); "
            f"use a larger alignment"
        )
    return shifted | PLAIN_FLAG if plain else shifted


def count_blocks(total_bytes: int, block_size: int) -> int:
    """
    Number of blocks covering total_bytes.

    A trailing partial block counts as a block of its own.
    """
    if block_size <= 0:
        raise GeometryError(f"Invalid block size: {block_size}")
    return -(-total_bytes // block_size)


# ============================================================================
# Container Header
# ============================================================================

@dataclass(eq=False)
class CisoHeader:
    """
    Header and block index of a .cso file.

    Binary layout:
        - magic: 4 bytes ('CISO')
        - header_size: 4 bytes (uint32, informational)
        - total_bytes: 8 bytes (uint64, uncompressed length)
        - block_size: 4 bytes (uint32, uncompressed bytes per block)
        - version: 1 byte
        - align: 1 byte (offsets are stored divided by 2**align)
        - reserved: 2 bytes
        - index: (block_count + 1) x uint32

    Each index entry holds the plain flag in bit 31 and the shifted block
    offset in bits 0-30. The final (sentinel) entry marks the end of the
    last block, so stored sizes are differences of neighbouring offsets.
    """
    total_bytes: int = 0
    block_size: int = DEFAULT_BLOCK_SIZE
    align: int = DEFAULT_ALIGN
    version: int = CISO_VERSION
    header_size: int = CISO_HEADER_SIZE
    reserved: bytes = b'\x00\x00'
    index: np.ndarray = field(default=None)
    magic: bytes = CISO_MAGIC

    def __post_init__(self):
        if self.block_size <= 0:
            raise GeometryError(f"Invalid block size: {self.block_size}")
        if not 0 <= self.align <= MAX_ALIGN:
            raise GeometryError(f"Invalid alignment exponent: {self.align}")
        if self.index is None:
            self.index = np.zeros(self.block_count + 1, dtype=_INDEX_DTYPE)
        else:
            self.index = np.asarray(self.index, dtype=_INDEX_DTYPE)
            if len(self.index) != self.block_count + 1:
                raise FormatError(
                    f"Index holds {len(self.index)} entries, "
                    f"expected {self.block_count + 1} for {self.block_count} blocks"
                )

    def __eq__(self, other) -> bool:
        if not isinstance(other, CisoHeader):
            return NotImplemented
        return (
            self.magic == other.magic
            and self.header_size == other.header_size
            and self.total_bytes == other.total_bytes
            and self.block_size == other.block_size
            and self.version == other.version
            and self.align == other.align
            and self.reserved == other.reserved
            and np.array_equal(self.index, other.index)
        )

    @property
    def block_count(self) -> int:
        return count_blocks(self.total_bytes, self.block_size)

    @property
    def index_size(self) -> int:
        """Byte length of the header plus index as laid out on disk."""
        return _HEADER_STRUCT.size + len(self.index) * _INDEX_DTYPE.itemsize

    # ------------------------------------------------------------------
    # Block geometry
    # ------------------------------------------------------------------

    def block_length(self, block: int) -> int:
        """Uncompressed length of a block (short only for a trailing block)."""
        start = block * self.block_size
        return min(self.block_size, self.total_bytes - start)

    def block_offset(self, block: int) -> int:
        return entry_offset(self.index[block], self.align)

    def is_plain(self, block: int) -> bool:
        return is_plain(self.index[block])

    def block_span(self, block: int) -> Tuple[int, int]:
        """
        Return (offset, stored_size) for a block.

        Plain blocks are exactly block_length bytes; compressed blocks run
        up to the next entry's offset (alignment padding included).
        """
        offset = self.block_offset(block)
        if self.is_plain(block):
            return offset, self.block_length(block)
        return offset, self.block_offset(block + 1) - offset

    def offsets(self) -> np.ndarray:
        """Recovered byte offsets for every index entry (sentinel included)."""
        positions = (self.index & OFFSET_MASK).astype(np.uint64)
        return positions << np.uint64(self.align)

    def plain_mask(self) -> np.ndarray:
        """Boolean array, True where the block is stored plain."""
        return (self.index[:-1] & PLAIN_FLAG) != 0

    @property
    def compressed_size(self) -> int:
        """Total container size as given by the sentinel entry."""
        return int(self.offsets()[-1]) if len(self.index) else 0

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Serialize header and index to bytes."""
        fixed = _HEADER_STRUCT.pack(
            self.magic,
            self.header_size,
            self.total_bytes,
            self.block_size,
            self.version,
            self.align,
            self.reserved,
        )
        return fixed + self.index.astype(_INDEX_DTYPE).tobytes()

    def write(self, stream: BinaryIO) -> None:
        stream.write(self.to_bytes())

    @classmethod
    def _parse_fixed(cls, data: bytes) -> Tuple:
        if len(data) < _HEADER_STRUCT.size:
            raise FormatError(f"Data too short for CISO header: {len(data)} bytes")

        fields = _HEADER_STRUCT.unpack(data[:_HEADER_STRUCT.size])
        magic = fields[0]
        if magic != CISO_MAGIC:
            raise FormatError(f"Invalid CISO file (magic: {magic!r})")

        block_size = fields[3]
        align = fields[5]
        if block_size == 0:
            raise GeometryError("Invalid CISO file: block size is zero")
        if align > MAX_ALIGN:
            raise GeometryError(f"Invalid CISO file: alignment exponent {align}")
        return fields

    @classmethod
    def _build(cls, fields: Tuple, index_bytes: bytes) -> 'CisoHeader':
        magic, header_size, total_bytes, block_size, version, align, reserved = fields
        entries = count_blocks(total_bytes, block_size) + 1
        expected = entries * _INDEX_DTYPE.itemsize
        if len(index_bytes) < expected:
            raise FormatError(
                f"Truncated CISO index: expected {entries} entries "
                f"({expected} bytes), got {len(index_bytes)} bytes"
            )

        index = np.frombuffer(index_bytes[:expected], dtype=_INDEX_DTYPE).copy()
        header = cls(
            total_bytes=total_bytes,
            block_size=block_size,
            align=align,
            version=version,
            header_size=header_size,
            reserved=reserved,
            index=index,
            magic=magic,
        )

        offsets = header.offsets()
        if len(offsets) > 1 and np.any(offsets[1:] < offsets[:-1]):
            bad = int(np.argmax(offsets[1:] < offsets[:-1]))
            raise FormatError(f"Invalid CISO index: offset decreases after block {bad}")

        # Parsed headers are read-only
        header.index.flags.writeable = False
        return header

    @classmethod
    def from_bytes(cls, data: bytes) -> 'CisoHeader':
        """
        Deserialize header and index from bytes.

        Args:
            data: Raw bytes starting at the magic tag; trailing bytes
                (block payloads) are ignored

        Returns:
            Parsed CisoHeader

        Raises:
            FormatError: If the magic is wrong or the data is truncated
            GeometryError: If block size or alignment is unusable
        """
        fields = cls._parse_fixed(data)
        return cls._build(fields, data[_HEADER_STRUCT.size:])

    @classmethod
    def read(cls, stream: BinaryIO) -> 'CisoHeader':
        """
        Parse a header from the current position of a binary stream.

        The index is read in bounded chunks, so a header claiming more
        entries than the stream holds fails with FormatError instead of
        attempting a huge allocation.
        """
        fields = cls._parse_fixed(stream.read(_HEADER_STRUCT.size))
        entries = count_blocks(fields[2], fields[3]) + 1
        expected = entries * _INDEX_DTYPE.itemsize

        chunks = []
        received = 0
        while received < expected:
            chunk = stream.read(min(expected - received, _INDEX_READ_CHUNK))
            if not chunk:
                raise FormatError(
                    f"Truncated CISO index: expected {entries} entries "
                    f"({expected} bytes), got {received} bytes"
                )
            chunks.append(chunk)
            received += len(chunk)
        return cls._build(fields, b''.join(chunks))
