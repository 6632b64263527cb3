#!/usr/bin/env python3
"""
CISO-Zip: Block Codec
=====================

Whole-file encoding and sequential decoding of .cso containers.

Every block is compressed with raw DEFLATE (no zlib header) using a fresh
compressor, so any block can be inflated on its own. Blocks that do not
shrink are stored plain and flagged in the index.

Example:
    >>> zipper = CISOZip(level=9)
    >>> container = zipper.compress(iso_bytes)
    >>> restored = zipper.decompress(container)

License: MIT
"""

import io
import logging
import zlib
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Union

from .core import (
    CisoHeader,
    DecompressError,
    GeometryError,
    DEFAULT_ALIGN,
    DEFAULT_BLOCK_SIZE,
    make_entry,
)

logger = logging.getLogger(__name__)

MIN_LEVEL = 1
MAX_LEVEL = 9


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly size bytes or raise OSError."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise OSError(
                f"Short read: expected {size} bytes, got {size - remaining}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def _remove_partial(path: Path) -> None:
    """Delete an output file left behind by a failed conversion."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    else:
        logger.warning(f"Removed incomplete output: {path}")


def _deflate(data: bytes, level: int) -> bytes:
    compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def _inflate(payload: bytes, length: int, block: int) -> bytes:
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        data = decompressor.decompress(payload, length + 1)
    except zlib.error as e:
        raise DecompressError(f"Block {block}: corrupt payload ({e})") from e

    if len(data) != length:
        raise DecompressError(
            f"Block {block}: decompressed to {len(data)} bytes, expected {length}"
        )
    if not decompressor.eof:
        raise DecompressError(f"Block {block}: truncated compressed stream")
    return data


# ============================================================================
# Encoder
# ============================================================================

def compress_stream(reader: BinaryIO, writer: BinaryIO, level: int = MAX_LEVEL,
                    block_size: int = DEFAULT_BLOCK_SIZE,
                    align: int = DEFAULT_ALIGN) -> CisoHeader:
    """
    Encode a raw image into a .cso container.

    The container is written from offset 0 of the writer. The header is
    written twice: once with a placeholder index, then again after the
    last block once every offset is known, so the writer must be seekable.

    Args:
        reader: Seekable binary stream holding the raw image
        writer: Seekable binary stream receiving the container
        level: DEFLATE level, 1 (fast) to 9 (small)
        block_size: Uncompressed bytes per block
        align: Block offsets are padded to multiples of 2**align

    Returns:
        The finalized CisoHeader

    Raises:
        ValueError: If level is outside 1-9
        GeometryError: If block size or alignment is unusable
        OSError: If the source ends early or a write fails
    """
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValueError(f"Unsupported compress level: {level}")

    total_bytes = reader.seek(0, io.SEEK_END)
    reader.seek(0)

    header = CisoHeader(total_bytes=total_bytes, block_size=block_size, align=align)
    if total_bytes % block_size:
        logger.warning(
            f"Input size {total_bytes} is not a multiple of block size {block_size}; "
            f"last block holds {total_bytes % block_size} bytes"
        )

    writer.seek(0)
    header.write(writer)
    write_pos = header.index_size

    align_mask = (1 << align) - 1
    plain_blocks = 0

    for block in range(header.block_count):
        padding = -write_pos & align_mask
        if padding:
            writer.write(b'\x00' * padding)
            write_pos += padding

        length = header.block_length(block)
        data = _read_exact(reader, length)
        packed = _deflate(data, level)

        plain = len(packed) >= length
        if plain:
            logger.debug(f"Block {block}: stored plain ({len(packed)} >= {length})")
            plain_blocks += 1
            payload = data
        else:
            payload = packed

        header.index[block] = make_entry(write_pos, align, plain)
        writer.write(payload)
        write_pos += len(payload)

    # Sentinel must be aligned or its low bits would be lost
    padding = -write_pos & align_mask
    if padding:
        writer.write(b'\x00' * padding)
        write_pos += padding
    header.index[-1] = make_entry(write_pos, align)

    writer.seek(0)
    header.write(writer)
    writer.seek(write_pos)

    logger.info(
        f"Encoded {total_bytes:,} bytes into {write_pos:,} bytes "
        f"({header.block_count} blocks, {plain_blocks} plain)"
    )
    return header


def encode(data: bytes, level: int = MAX_LEVEL,
           block_size: int = DEFAULT_BLOCK_SIZE,
           align: int = DEFAULT_ALIGN) -> bytes:
    """Encode an in-memory image and return the container bytes."""
    output = io.BytesIO()
    compress_stream(io.BytesIO(data), output, level, block_size, align)
    return output.getvalue()


# ============================================================================
# Sequential Decoder
# ============================================================================

def decode_block(stream: BinaryIO, header: CisoHeader, block: int) -> bytes:
    """
    Read and decode a single block.

    Raises:
        OSError: If the container ends before the block does
        DecompressError: If the payload is corrupt
    """
    offset, stored = header.block_span(block)
    length = header.block_length(block)

    stream.seek(offset)
    payload = _read_exact(stream, stored)

    if header.is_plain(block):
        return payload
    return _inflate(payload, length, block)


def decompress_stream(reader: BinaryIO, writer: BinaryIO) -> CisoHeader:
    """
    Decode a .cso container, writing exactly total_bytes to writer.

    Returns:
        The parsed CisoHeader
    """
    reader.seek(0)
    header = CisoHeader.read(reader)

    for block in range(header.block_count):
        writer.write(decode_block(reader, header, block))

    logger.info(f"Decoded {header.block_count} blocks ({header.total_bytes:,} bytes)")
    return header


def decode(data: bytes) -> bytes:
    """Decode in-memory container bytes back to the raw image."""
    output = io.BytesIO()
    decompress_stream(io.BytesIO(data), output)
    return output.getvalue()


# ============================================================================
# Main CISOZip Class
# ============================================================================

class CISOZip:
    """
    CISO compression/decompression engine.

    Example:
        >>> zipper = CISOZip(level=6)
        >>> zipper.compress_file('game.iso')          # writes game.cso
        >>> with zipper.open('game.cso') as f:
        ...     f.seek(0x8000)
        ...     volume_descriptor = f.read(2048)
    """

    DEFAULT_LEVEL = MAX_LEVEL
    COMPRESSED_SUFFIX = '.cso'
    DECOMPRESSED_SUFFIX = '.iso'

    # Soft limit for warning about very large images (4GB)
    LARGE_FILE_WARNING_SIZE = 4 * 1024 * 1024 * 1024

    def __init__(self, level: int = DEFAULT_LEVEL,
                 block_size: int = DEFAULT_BLOCK_SIZE,
                 align: int = DEFAULT_ALIGN):
        if not MIN_LEVEL <= level <= MAX_LEVEL:
            raise ValueError(f"Unsupported compress level: {level}")
        if block_size <= 0:
            raise GeometryError(f"Invalid block size: {block_size}")
        self.level = level
        self.block_size = block_size
        self.align = align

    def compress(self, data: bytes) -> bytes:
        """Compress raw image bytes to .cso format."""
        return encode(data, self.level, self.block_size, self.align)

    def decompress(self, data: bytes) -> bytes:
        """Decompress .cso bytes to the raw image."""
        return decode(data)

    def compress_file(self, input_path: Union[Path, str],
                      output_path: Optional[Union[Path, str]] = None) -> Path:
        """
        Compress an image file to .cso format.

        Args:
            input_path: Path to input image
            output_path: Optional output path (defaults to .cso suffix)

        Returns:
            Path to the compressed file
        """
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Input file not found: {input_path}")

        if output_path is None:
            output_path = input_path.with_suffix(self.COMPRESSED_SUFFIX)
        else:
            output_path = Path(output_path)

        file_size = input_path.stat().st_size
        if file_size > self.LARGE_FILE_WARNING_SIZE:
            logger.warning(
                f"Large image detected ({file_size / (1024**3):.2f} GB); "
                f"use align >= 1 if offsets overflow the index"
            )

        with open(input_path, 'rb') as src, open(output_path, 'wb') as dst:
            try:
                compress_stream(src, dst, self.level, self.block_size, self.align)
            except Exception:
                # A half-written container still carries a parseable placeholder index
                dst.close()
                _remove_partial(output_path)
                raise

        return output_path

    def decompress_file(self, input_path: Union[Path, str],
                        output_path: Optional[Union[Path, str]] = None) -> Path:
        """Decompress a .cso file (defaults to .iso suffix)."""
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Input file not found: {input_path}")

        if output_path is None:
            output_path = input_path.with_suffix(self.DECOMPRESSED_SUFFIX)
        else:
            output_path = Path(output_path)

        with open(input_path, 'rb') as src, open(output_path, 'wb') as dst:
            try:
                decompress_stream(src, dst)
            except Exception:
                dst.close()
                _remove_partial(output_path)
                raise

        return output_path

    def open(self, path: Union[Path, str]):
        """Open a .cso file for random access; see CisoReader."""
        from .reader import CisoReader
        return CisoReader(path)

    def info(self, path: Union[Path, str]) -> Dict[str, Any]:
        """
        Get information about a .cso file.

        Only the header and index are read; block payloads are not touched.

        Raises:
            FileNotFoundError: If file doesn't exist
            FormatError: If the header is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        file_size = path.stat().st_size
        with open(path, 'rb') as f:
            header = CisoHeader.read(f)

        plain_blocks = int(header.plain_mask().sum())
        compressed_size = header.compressed_size
        ratio = header.total_bytes / compressed_size if compressed_size > 0 else 0.0

        return {
            'magic': header.magic.decode('ascii', errors='replace'),
            'version': header.version,
            'header_size': header.header_size,
            'total_bytes': header.total_bytes,
            'block_size': header.block_size,
            'align': header.align,
            'block_count': header.block_count,
            'plain_blocks': plain_blocks,
            'compressed_blocks': header.block_count - plain_blocks,
            'compressed_size': compressed_size,
            'file_size': file_size,
            'compression_ratio': ratio,
        }
