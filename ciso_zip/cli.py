#!/usr/bin/env python3
"""
CISO-Zip Command Line Interface
===============================

Usage:
    ciso-zip <infile> <outfile> --level <0-9>
    ciso-zip compress <input> [-o <output>] [--level N] [--block-size N] [--align N]
    ciso-zip decompress <input> [-o <output>]
    ciso-zip info <file>

Level 0 decompresses a .cso file; levels 1-9 compress
(1 = fast/large, 9 = small/slow).

The form is chosen from the first argument not starting with '-': a
subcommand name selects the subcommand form, anything else the
<infile> <outfile> form. Options taking a value must therefore come
after the subcommand: `ciso-zip --level 9 compress out.cso` is taken
as the <infile> <outfile> form with an input file named 'compress'.
Write `ciso-zip compress in.iso --level 9` instead.

License: MIT
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core import CISO_VERSION, DEFAULT_ALIGN, DEFAULT_BLOCK_SIZE
from .codec import CISOZip, MAX_LEVEL

COMMANDS = ('compress', 'decompress', 'info')


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--version', action='version',
                        version=f'ciso-zip (CISO v{CISO_VERSION})')
    parser.add_argument('--debug', action='store_true',
                        help='Show full stack trace on error')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log progress to stderr')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ciso-zip',
        description='CISO-Zip: Compressed ISO converter'
    )
    _add_common_options(parser)

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Compress command
    compress_parser = subparsers.add_parser('compress', help='Compress image to .cso format')
    compress_parser.add_argument('input', help='Input image file')
    compress_parser.add_argument('-o', '--output', help='Output .cso file')
    compress_parser.add_argument('-l', '--level', type=int, default=MAX_LEVEL,
                                 help='Compression level 1-9 (default: 9)')
    compress_parser.add_argument('--block-size', type=int, default=DEFAULT_BLOCK_SIZE,
                                 help=f'Block size in bytes (default: {DEFAULT_BLOCK_SIZE})')
    compress_parser.add_argument('--align', type=int, default=DEFAULT_ALIGN,
                                 help='Block alignment exponent 0-31 (default: 0)')

    # Decompress command
    decompress_parser = subparsers.add_parser('decompress', help='Decompress .cso file')
    decompress_parser.add_argument('input', help='Input .cso file')
    decompress_parser.add_argument('-o', '--output', help='Output image file')

    # Info command
    info_parser = subparsers.add_parser('info', help='Show .cso file information')
    info_parser.add_argument('file', help='.cso file to inspect')

    return parser


def build_convert_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ciso-zip',
        description='Compressed ISO9660 converter',
        formatter_class=argparse.RawTextHelpFormatter
    )
    _add_common_options(parser)
    parser.add_argument('infile', help='Path of the input file')
    parser.add_argument('outfile', help='Path of the output file')
    parser.add_argument('-l', '--level', type=int, required=True,
                        help='1-9 compress ISO to CSO (1=fast/large - 9=small/slow)\n'
                             '0   decompress CSO to ISO')
    return parser


def main(argv: Optional[List[str]] = None):
    argv = sys.argv[1:] if argv is None else list(argv)

    positional = [arg for arg in argv if not arg.startswith('-')]
    if positional and positional[0] not in COMMANDS:
        parser = build_convert_parser()
        args = parser.parse_args(argv)
        args.command = 'convert'
    else:
        parser = build_parser()
        args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else (logging.INFO if args.verbose else logging.WARNING),
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        if args.command == 'convert':
            cmd_convert(args)
        elif args.command == 'compress':
            cmd_compress(args)
        elif args.command == 'decompress':
            cmd_decompress(args)
        elif args.command == 'info':
            cmd_info(args)
    except Exception as e:
        if args.debug:
            raise  # Show full stack trace for debugging
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_convert(args):
    """Compress or decompress depending on level (0 = decompress)"""
    if args.level < 0 or args.level > MAX_LEVEL:
        print("unsupported compress level.", file=sys.stderr)
        sys.exit(1)

    input_path = Path(args.infile)
    output_path = Path(args.outfile)

    if args.level == 0:
        CISOZip().decompress_file(input_path, output_path)
        print(f"Decompressed: {input_path} -> {output_path}")
    else:
        CISOZip(level=args.level).compress_file(input_path, output_path)
        print(f"Compressed: {input_path} -> {output_path}")


def cmd_compress(args):
    """Compress image to .cso format"""
    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else input_path.with_suffix('.cso')

    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    original_size = input_path.stat().st_size

    zipper = CISOZip(level=args.level, block_size=args.block_size, align=args.align)
    zipper.compress_file(input_path, output_path)

    compressed_size = output_path.stat().st_size
    ratio = original_size / compressed_size if compressed_size > 0 else 0.0

    print(f"Compressed: {input_path}")
    print(f"  Original:   {original_size:,} bytes")
    print(f"  Compressed: {compressed_size:,} bytes")
    print(f"  Ratio:      {ratio:.2f}x")
    print(f"  Output:     {output_path}")


def cmd_decompress(args):
    """Decompress .cso file"""
    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else input_path.with_suffix('.iso')

    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    zipper = CISOZip()
    result_path = zipper.decompress_file(input_path, output_path)

    decompressed_size = result_path.stat().st_size

    print(f"Decompressed: {input_path}")
    print(f"  Output: {result_path}")
    print(f"  Size:   {decompressed_size:,} bytes")


def cmd_info(args):
    """Show .cso file information"""
    zipper = CISOZip()
    info = zipper.info(args.file)

    print(f"CISO File: {args.file}")
    print("-" * 50)
    for key, value in info.items():
        if key == 'compression_ratio':
            print(f"  {key}: {value:.2f}x")
        else:
            print(f"  {key}: {value}")


if __name__ == '__main__':
    main()
