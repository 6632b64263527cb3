#!/usr/bin/env python3
"""
CISO-Zip: Random-Access Reader
==============================

File-like view of a .cso container that behaves like the uncompressed
image. Only the blocks touched by a read are inflated.

Example:
    >>> with CisoReader('game.cso') as f:
    ...     f.seek(16 * 2048)
    ...     pvd = f.read(2048)

License: MIT
"""

import io
import logging
import os
from typing import BinaryIO, Union

from .core import CisoHeader
from .codec import decode_block

logger = logging.getLogger(__name__)


class CisoReader(io.RawIOBase):
    """
    Seekable, read-only stream over the decompressed contents of a container.

    The only mutable state is the logical position. Seeking below zero
    clamps to 0; seeking past the end is allowed and later reads return
    no data. Opening by path owns the file and closes it on close(); an
    already-open handle is left open for the caller.

    A reader is not thread-safe: it seeks the underlying handle on every
    block, so each thread needs its own reader and its own handle.
    """

    def __init__(self, file: Union[str, os.PathLike, BinaryIO]):
        super().__init__()
        self._own_file = isinstance(file, (str, os.PathLike))
        self._file: BinaryIO = open(file, 'rb') if self._own_file else file
        self._position = 0

        try:
            self._file.seek(0)
            self._header = CisoHeader.read(self._file)
        except Exception:
            if self._own_file:
                self._file.close()
            raise

        logger.debug(
            f"Opened container: {self._header.total_bytes:,} bytes in "
            f"{self._header.block_count} blocks of {self._header.block_size}"
        )

    @property
    def header(self) -> CisoHeader:
        return self._header

    @property
    def size(self) -> int:
        """Uncompressed length of the image."""
        return self._header.total_bytes

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        self._ensure_open()
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._ensure_open()
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self._header.total_bytes + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")

        self._position = max(0, position)
        return self._position

    def read_block(self, buffer, block_index: int) -> int:
        """
        Decode one block into the front of buffer.

        Returns:
            Number of bytes produced, or 0 if block_index is past the
            last block
        """
        if block_index < 0 or block_index + 1 >= len(self._header.index):
            return 0

        data = decode_block(self._file, self._header, block_index)
        view = memoryview(buffer).cast('B')
        if len(view) < len(data):
            raise ValueError(
                f"Buffer too small for block {block_index}: "
                f"{len(view)} < {len(data)} bytes"
            )
        view[:len(data)] = data
        return len(data)

    def readinto(self, buffer) -> int:
        """
        Fill buffer from the current logical position.

        Returns:
            Bytes copied; 0 at end of data. A short count is normal.
        """
        self._ensure_open()
        view = memoryview(buffer).cast('B')
        wanted = len(view)
        if wanted == 0:
            return 0

        block_size = self._header.block_size
        block, offset_in_block = divmod(self._position, block_size)
        scratch = None
        copied = 0

        if offset_in_block:
            scratch = bytearray(block_size)
            produced = self.read_block(scratch, block)
            if produced <= offset_in_block:
                return 0

            count = min(produced - offset_in_block, wanted)
            view[:count] = scratch[offset_in_block:offset_in_block + count]
            copied += count
            self._position += count
            if offset_in_block + count < produced:
                return copied
            block += 1

        while copied < wanted:
            remaining = wanted - copied
            if remaining >= block_size:
                produced = self.read_block(view[copied:], block)
                count = produced
            else:
                # Tail shorter than a block goes through the scratch buffer
                if scratch is None:
                    scratch = bytearray(block_size)
                produced = self.read_block(scratch, block)
                count = min(produced, remaining)
                view[copied:copied + count] = scratch[:count]

            if produced == 0:
                break
            copied += count
            self._position += count
            if count < produced:
                break
            block += 1

        return copied

    def close(self) -> None:
        handle = getattr(self, '_file', None)
        if not self.closed and self._own_file and handle is not None:
            handle.close()
        super().close()

    def _ensure_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed CISO reader")

    def __repr__(self) -> str:
        return (
            f"CisoReader(size={self._header.total_bytes}, "
            f"block_size={self._header.block_size}, position={self._position})"
        )
