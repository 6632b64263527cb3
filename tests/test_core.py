#!/usr/bin/env python3
"""
CISO-Zip Core Test Suite
========================

Tests for the container header, index entries and error taxonomy.
"""

import pytest
import numpy as np
import struct
import io
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from ciso_zip.core import (
    CisoHeader,
    CisoError,
    FormatError,
    GeometryError,
    CISO_MAGIC,
    CISO_VERSION,
    CISO_HEADER_SIZE,
    DEFAULT_BLOCK_SIZE,
    PLAIN_FLAG,
    is_plain,
    entry_offset,
    make_entry,
    count_blocks,
)


def _raw_header(total_bytes=4096, block_size=2048, align=0, magic=CISO_MAGIC,
                index=None):
    """Build header bytes by hand, independent of CisoHeader.to_bytes()"""
    fixed = struct.pack('<4sIQIBB2s', magic, 24, total_bytes, block_size,
                        1, align, b'\x00\x00')
    if index is None:
        index = []
    return fixed + b''.join(struct.pack('<I', e) for e in index)


class TestIndexEntry:
    """Test packed index entry helpers"""

    def test_plain_flag(self):
        """Bit 31 marks a plain block"""
        assert is_plain(0x80000000)
        assert is_plain(0x80001234)
        assert not is_plain(0x7FFFFFFF)
        assert not is_plain(0)

    def test_offset_without_alignment(self):
        """With align=0 the low 31 bits are the offset"""
        assert entry_offset(0x1234, 0) == 0x1234
        assert entry_offset(0x80001234, 0) == 0x1234

    def test_offset_masks_before_shifting(self):
        """Plain flag is removed before the alignment shift"""
        assert entry_offset(0x80000010, 4) == 0x100
        assert entry_offset(0x00000010, 4) == 0x100
        # Large shifted field must survive the shift intact
        assert entry_offset(0xFFFFFFFF, 2) == 0x7FFFFFFF << 2

    def test_make_entry(self):
        """make_entry is the inverse of entry_offset/is_plain"""
        entry = make_entry(0x200, 4, plain=True)
        assert entry == (0x20 | PLAIN_FLAG)
        assert is_plain(entry)
        assert entry_offset(entry, 4) == 0x200

    def test_make_entry_rejects_unaligned(self):
        """Unaligned offsets cannot be stored"""
        with pytest.raises(GeometryError, match="not aligned"):
            make_entry(0x201, 4)

    def test_make_entry_rejects_overflow(self):
        """Offsets beyond 31 bits after shifting are rejected"""
        with pytest.raises(GeometryError, match="too large"):
            make_entry(1 << 31, 0)
        assert entry_offset(make_entry(1 << 31, 1), 1) == 1 << 31


class TestCountBlocks:
    """Test block-count arithmetic"""

    def test_exact_multiple(self):
        assert count_blocks(4096, 2048) == 2
        assert count_blocks(0, 2048) == 0

    def test_trailing_partial_block(self):
        """A remainder forms one extra, shorter block"""
        assert count_blocks(5000, 2048) == 3

    def test_zero_block_size(self):
        with pytest.raises(GeometryError):
            count_blocks(4096, 0)


class TestCisoHeader:
    """Test CisoHeader serialization and parsing"""

    def test_defaults(self):
        """Default header uses the standard geometry"""
        header = CisoHeader(total_bytes=4096)

        assert header.magic == CISO_MAGIC
        assert header.version == CISO_VERSION
        assert header.header_size == CISO_HEADER_SIZE
        assert header.block_size == DEFAULT_BLOCK_SIZE
        assert header.align == 0
        assert header.block_count == 2
        assert len(header.index) == 3
        assert header.index.dtype == np.dtype('<u4')

    def test_to_bytes_layout(self):
        """Fixed fields sit at their documented offsets"""
        header = CisoHeader(total_bytes=4096, block_size=2048, align=3,
                            reserved=b'\xAB\xCD', index=[4, 8, 12])
        data = header.to_bytes()

        assert len(data) == 24 + 3 * 4
        assert data[:4] == b'CISO'
        assert struct.unpack('<I', data[4:8])[0] == 24
        assert struct.unpack('<Q', data[8:16])[0] == 4096
        assert struct.unpack('<I', data[16:20])[0] == 2048
        assert data[20] == 1
        assert data[21] == 3
        assert data[22:24] == b'\xAB\xCD'
        assert struct.unpack('<3I', data[24:36]) == (4, 8, 12)

    def test_roundtrip(self):
        """from_bytes(to_bytes()) is bit-exact"""
        header = CisoHeader(total_bytes=3 * 2048, block_size=2048, align=2,
                            reserved=b'\x01\x02',
                            index=[10, 20 | PLAIN_FLAG, 700, 1300])
        data = header.to_bytes()
        restored = CisoHeader.from_bytes(data)

        assert restored == header
        assert restored.to_bytes() == data
        assert restored.reserved == b'\x01\x02'

    def test_read_from_stream(self):
        """read() consumes exactly the header and index"""
        header = CisoHeader(total_bytes=2048, index=[32, 100])
        stream = io.BytesIO(header.to_bytes() + b'payload')

        restored = CisoHeader.read(stream)

        assert restored == header
        assert stream.read() == b'payload'

    def test_equality_compares_index(self):
        a = CisoHeader(total_bytes=2048, index=[32, 100])
        b = CisoHeader(total_bytes=2048, index=[32, 101])
        assert a != b
        assert a == CisoHeader(total_bytes=2048, index=[32, 100])

    def test_block_span(self):
        """Stored sizes come from neighbouring entries, plain blocks are block-sized"""
        header = CisoHeader(total_bytes=3 * 2048, block_size=2048,
                            index=[40, 140 | PLAIN_FLAG, 2188, 2300])

        assert header.block_span(0) == (40, 100)
        assert header.block_span(1) == (140, 2048)
        assert header.block_span(2) == (2188, 112)
        assert header.compressed_size == 2300
        assert list(header.plain_mask()) == [False, True, False]

    def test_block_length_trailing_block(self):
        header = CisoHeader(total_bytes=5000, block_size=2048)
        assert header.block_count == 3
        assert [header.block_length(i) for i in range(3)] == [2048, 2048, 904]

    def test_offsets_with_alignment(self):
        header = CisoHeader(total_bytes=2048, align=4, index=[2 | PLAIN_FLAG, 130])
        assert list(header.offsets()) == [32, 2080]

    def test_invalid_magic_raises(self):
        """Wrong magic is a format error"""
        data = _raw_header(magic=b'ZISO', index=[36, 40, 44])

        with pytest.raises(FormatError, match="Invalid CISO file"):
            CisoHeader.from_bytes(data)

    def test_truncated_header_raises(self):
        with pytest.raises(FormatError, match="too short"):
            CisoHeader.from_bytes(b'CISO\x18\x00')

    def test_truncated_index_raises(self):
        """Index must hold block_count + 1 entries"""
        data = _raw_header(total_bytes=4096, index=[36, 40])

        with pytest.raises(FormatError, match="Truncated CISO index"):
            CisoHeader.from_bytes(data)

    def test_zero_block_size_raises(self):
        data = _raw_header(block_size=0)

        with pytest.raises(GeometryError, match="block size is zero"):
            CisoHeader.from_bytes(data)

    def test_bad_alignment_raises(self):
        data = _raw_header(align=32, index=[0, 0, 0])

        with pytest.raises(GeometryError):
            CisoHeader.from_bytes(data)

    def test_decreasing_offsets_raise(self):
        data = _raw_header(total_bytes=4096, index=[36, 30, 44])

        with pytest.raises(FormatError, match="decreases after block 0"):
            CisoHeader.from_bytes(data)

    def test_errors_are_value_errors(self):
        """Callers can catch all container errors as ValueError"""
        assert issubclass(FormatError, CisoError)
        assert issubclass(GeometryError, CisoError)
        assert issubclass(CisoError, ValueError)

    def test_constructor_validates_geometry(self):
        with pytest.raises(GeometryError):
            CisoHeader(total_bytes=2048, block_size=0)
        with pytest.raises(GeometryError):
            CisoHeader(total_bytes=2048, align=40)

    def test_constructor_validates_index_length(self):
        """Index must have exactly block_count + 1 entries"""
        with pytest.raises(FormatError, match="expected 3"):
            CisoHeader(total_bytes=4096, block_size=2048, index=[24, 30])
        with pytest.raises(FormatError):
            CisoHeader(total_bytes=4096, block_size=2048, index=[24, 30, 40, 50])

    def test_huge_block_count_from_stream(self):
        """A header claiming an enormous index fails as a format error"""
        data = _raw_header(total_bytes=2**64 - 1, block_size=1, index=[36, 40, 44, 48])

        with pytest.raises(FormatError, match="Truncated CISO index"):
            CisoHeader.read(io.BytesIO(data))
        with pytest.raises(FormatError, match="Truncated CISO index"):
            CisoHeader.from_bytes(data)

    def test_parsed_index_is_read_only(self):
        header = CisoHeader.from_bytes(_raw_header(total_bytes=2048, index=[32, 40]))

        with pytest.raises(ValueError):
            header.index[0] = 0
        assert header.block_offset(0) == 32
