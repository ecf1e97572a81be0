"""
Command line interface: ``secram keygen``, ``convert``, ``view``, ``query`` and ``to-sam``.
"""
import argparse
import base64
import logging
import re
import sys
from pathlib import Path
from secrets import token_bytes
from typing import Optional, List, Iterable, TextIO

from secram import __version__
from secram.convert import ConverterConfig, convert_file, reconstruct_file
from secram.core.position import PositionRecord
from secram.io.index import PositionIndex
from secram.io.secram import SecramReader
from secram.utils import time_string, bold

log = logging.getLogger(__name__)


# Constants ------------------------------------------------------------------------------------------------------------
KEY_SIZE = 32
_REGION = re.compile(r'^(?P<name>[^:]+):(?P<start>[0-9,]+)-(?P<end>[0-9,]+)$')


# Functions ------------------------------------------------------------------------------------------------------------
def read_key(path: Path) -> bytes:
    """Reads a master key stored as one base64 line."""
    try: key = base64.b64decode(path.read_text().strip(), validate=True)
    except ValueError as e: raise SystemExit(f'{path} does not contain a base64 key') from e
    if not key: raise SystemExit(f'{path} contains an empty key')
    return key


def write_key(path: Path, key: bytes):
    path.write_text(base64.b64encode(key).decode('ascii') + '\n')


def parse_region(region: str) -> tuple[str, int, int]:
    """
    Parses a 1-based inclusive ``name:start-end`` region into a name and 0-based inclusive offsets.

    Examples:
        >>> parse_region('chr1:151-171')
        ('chr1', 150, 170)
    """
    if not (m := _REGION.match(region)): raise argparse.ArgumentTypeError(f'Invalid region {region!r}')
    start, end = int(m['start'].replace(',', '')), int(m['end'].replace(',', ''))
    if start < 1 or end < start: raise argparse.ArgumentTypeError(f'Invalid region bounds in {region!r}')
    return m['name'], start - 1, end - 1


def format_record(record: PositionRecord, references: list[tuple[bytes, int]]) -> str:
    """Formats a record as a tab-separated line with a 1-based offset."""
    features = ','.join(
        f'{f.coverage_index}:{f.kind.symbol.decode()}{f.length}{":" + f.bases.decode() if f.bases else ""}'
        for f in record.features) or '.'
    qualities = bytes(min(int(q), 93) + 33 for q in record.qualities).decode('ascii') or '.'
    return '\t'.join([references[record.reference_id][0].decode(), str(record.offset + 1),
                      record.reference_base.decode(), str(record.coverage), features, qualities])


def print_records(records: Iterable[PositionRecord], references: list[tuple[bytes, int]], out: TextIO = None):
    out = out or sys.stdout
    for record in records: print(format_record(record, references), file=out)


def cmd_keygen(args: argparse.Namespace):
    if args.keyfile.exists() and not args.force: raise SystemExit(f'{args.keyfile} exists; use --force to overwrite')
    write_key(args.keyfile, token_bytes(KEY_SIZE))
    print(f'Wrote a {KEY_SIZE}-byte key to {bold(str(args.keyfile))}', file=sys.stderr)


def cmd_convert(args: argparse.Namespace):
    stats = convert_file(args.sam, args.fasta, args.out, read_key(args.key), ConverterConfig.from_args(args))
    in_size = args.sam.stat().st_size
    out_size = args.out.stat().st_size + PositionIndex.path_for(args.out).stat().st_size
    print(f'{bold("Reads")}: {stats.n_reads:,} ({stats.n_unmapped:,} unmapped, {stats.n_rejected:,} rejected)\n'
          f'{bold("Records")}: {stats.n_records:,}\n'
          f'{bold("Time")}: {time_string(stats.elapsed)}\n'
          f'{bold("Size")}: {in_size:,} -> {out_size:,} bytes '
          f'({(out_size / in_size - 1) * 100 if in_size else 0:+.1f}%)', file=sys.stderr)


def cmd_view(args: argparse.Namespace):
    with SecramReader(args.secram, read_key(args.key)) as reader:
        print_records(reader.records(), reader.header.references)


def cmd_query(args: argparse.Namespace):
    name, start, end = args.region
    with SecramReader(args.secram, read_key(args.key)) as reader:
        try: records = reader.query_reference(name, start, end)
        except KeyError as e: raise SystemExit(e.args[0]) from e
        print_records(records, reader.header.references)


def cmd_to_sam(args: argparse.Namespace):
    n_reads = reconstruct_file(args.secram, args.out, read_key(args.key))
    print(f'Wrote {n_reads:,} reads to {bold(str(args.out))}', file=sys.stderr)


def build_cli() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog='secram', description='Position-indexed, encrypted storage of aligned reads')
    ap.add_argument('-v', '--verbose', action='store_true', help='Log debug messages to stderr')
    ap.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    sub = ap.add_subparsers(dest='cmd', required=True)

    p = sub.add_parser('keygen', help='Write a new random master key (one base64 line).')
    p.add_argument('keyfile', type=Path)
    p.add_argument('--force', action='store_true', help='Overwrite an existing key file.')
    p.set_defaults(fn=cmd_keygen)

    p = sub.add_parser('convert', help='Convert a coordinate-sorted SAM file to SECRAM.')
    p.add_argument('sam', type=Path, help='Coordinate-sorted SAM file (optionally gzipped).')
    p.add_argument('fasta', type=Path, help='Reference FASTA holding every @SQ sequence.')
    p.add_argument('out', type=Path, help='Output SECRAM file; the index is written to <out>.secrai.')
    p.add_argument('-k', '--key', type=Path, required=True, help='Master key file.')
    p.add_argument('--records-per-container', type=int, default=1000,
                   help='Records per container, the granularity of random access (default: %(default)s).')
    p.set_defaults(fn=cmd_convert)

    p = sub.add_parser('view', help='Print every record of a SECRAM file.')
    p.add_argument('secram', type=Path)
    p.add_argument('-k', '--key', type=Path, required=True, help='Master key file.')
    p.set_defaults(fn=cmd_view)

    p = sub.add_parser('query', help='Print the records of a 1-based inclusive region.')
    p.add_argument('secram', type=Path)
    p.add_argument('region', type=parse_region, help='Region as name:start-end, e.g. chr1:151-171.')
    p.add_argument('-k', '--key', type=Path, required=True, help='Master key file.')
    p.set_defaults(fn=cmd_query)

    p = sub.add_parser('to-sam', help='Rebuild the stored reads as a SAM file.')
    p.add_argument('secram', type=Path)
    p.add_argument('out', type=Path, help='Output SAM file.')
    p.add_argument('-k', '--key', type=Path, required=True, help='Master key file.')
    p.set_defaults(fn=cmd_to_sam)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_cli()
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s %(name)s %(levelname)s: %(message)s')
    args.fn(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
