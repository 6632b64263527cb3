"""
CISO-Zip: Compressed ISO Container Codec
========================================

Store disc images block-compressed, read them back byte-accurately.

CISO-Zip packs a raw image (e.g. an ISO9660 dump) into a .cso container:
fixed-size blocks compressed independently with raw DEFLATE, plus an
index of block offsets. The index lets any byte range of the original
image be read without decompressing the rest.

License: MIT

Features:
- Encoding at DEFLATE levels 1-9 with plain-block fallback
- Sequential decoding back to the exact original image
- Random-access, file-like reader with seek/read across block boundaries
- Configurable block size and power-of-two block alignment

Example:
    >>> from ciso_zip import CISOZip
    >>> zipper = CISOZip(level=9)
    >>> container = zipper.compress(data)
    >>> restored = zipper.decompress(container)
"""

from .core import (
    CisoHeader,
    CisoError,
    FormatError,
    GeometryError,
    DecompressError,
    CISO_MAGIC,
    CISO_VERSION,
    CISO_HEADER_SIZE,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_ALIGN,
    PLAIN_FLAG,
    OFFSET_MASK,
    is_plain,
    entry_offset,
    make_entry,
)

from .codec import (
    CISOZip,
    compress_stream,
    decompress_stream,
    decode_block,
    encode,
    decode,
)

from .reader import CisoReader

__all__ = [
    # Core
    'CisoHeader',
    'CisoError',
    'FormatError',
    'GeometryError',
    'DecompressError',
    'CISO_MAGIC',
    'CISO_VERSION',
    'CISO_HEADER_SIZE',
    'DEFAULT_BLOCK_SIZE',
    'DEFAULT_ALIGN',
    'PLAIN_FLAG',
    'OFFSET_MASK',
    'is_plain',
    'entry_offset',
    'make_entry',

    # Codec
    'CISOZip',
    'compress_stream',
    'decompress_stream',
    'decode_block',
    'encode',
    'decode',

    # Random access
    'CisoReader',
]

__version__ = '1.0.0'
__license__ = 'MIT'
