"""
Reading and writing SAM text files.
"""
from pathlib import Path
from typing import Union, BinaryIO, Generator, Iterable

import numpy as np

from secram.core.alignment import AlignedRead, Cigar
from secram.io import BaseReader, BaseWriter, SecramFormatError


# Classes --------------------------------------------------------------------------------------------------------------
class SamReader(BaseReader):
    """
    Reader for SAM (Sequence Alignment/Map) text files.

    The header is parsed on construction; ``@SQ`` lines define the sequence dictionary that reference ids index.
    Missing quality strings (``*``) become ``0xFF`` per base, as in BAM.

    Iterating parses every row and stops at the first bad one. Callers that want to skip bad rows iterate ``rows``
    and call ``parse_row`` themselves.

    Examples:
        >>> with SamReader("sample.sam") as reader:
        ...     for read in reader:
        ...         print(read.start)
    """
    __slots__ = ('references', '_reference_ids', '_pending')
    _MIN_COLS = 11
    _QUALITY_OFFSET = 33

    def __init__(self, file: Union[str, Path, BinaryIO]):
        super().__init__(file)
        self.references: list[tuple[bytes, int]] = []
        self._reference_ids: dict[bytes, int] = {}
        self._pending = None
        self._read_header()

    def _read_header(self):
        while line := self._handle.readline():
            if not line.startswith(b'@'):
                self._pending = line
                break
            if not line.startswith(b'@SQ'): continue
            tags = dict(field.split(b':', 1) for field in line.rstrip().split(b'\t')[1:] if b':' in field)
            try: name, length = tags[b'SN'], int(tags[b'LN'])
            except (KeyError, ValueError) as e: raise SecramFormatError(f'Invalid @SQ header line: {line!r}') from e
            self._reference_ids[name] = len(self.references)
            self.references.append((name, length))

    def reference_id(self, name: bytes) -> int:
        """Returns the index of a reference name in the sequence dictionary, ``-1`` for ``*``."""
        if name == b'*': return -1
        try: return self._reference_ids[name]
        except KeyError as e: raise SecramFormatError(f'Reference {name!r} is not in the SAM header') from e

    def _lines(self) -> Generator[bytes, None, None]:
        if self._pending is not None:
            line, self._pending = self._pending, None
            yield line
        yield from self._handle

    def rows(self) -> Generator[list[bytes], None, None]:
        """
        Iterates over the alignment lines without parsing them.

        Yields:
            The tab-separated columns of each line.

        Raises:
            SecramFormatError: If a line has fewer than 11 columns.
        """
        for line in self._lines():
            if not (line := line.rstrip(b'\r\n')): continue
            parts = line.split(b'\t')
            if len(parts) < self._MIN_COLS: raise SecramFormatError(f'Truncated SAM line: {line!r}')
            yield parts

    def __iter__(self) -> Generator[AlignedRead, None, None]:
        """
        Iterates over the alignment lines.

        Yields:
            AlignedRead objects in file order.
        """
        for parts in self.rows(): yield self.parse_row(parts)

    def parse_row(self, parts: list[bytes]) -> AlignedRead:
        """
        Parses one SAM alignment line.

        Args:
            parts: Tab-separated columns.

        Returns:
            An AlignedRead object.

        Raises:
            SecramFormatError: If a numeric column or a reference name is invalid.
            CigarError: If the CIGAR string cannot be parsed.
        """
        try: flag, pos, mapq, pnext, tlen = (int(parts[i]) for i in (1, 3, 4, 7, 8))
        except ValueError as e: raise SecramFormatError(f'Invalid numeric column in SAM line {parts[0]!r}') from e
        reference_id = self.reference_id(parts[2])
        bases = b'' if parts[9] == b'*' else parts[9]
        if parts[10] == b'*': qualities = np.full(len(bases), 0xFF, dtype=np.uint8)
        else: qualities = np.frombuffer(parts[10], dtype=np.uint8) - np.uint8(self._QUALITY_OFFSET)
        return AlignedRead(
            reference_id=reference_id, start=pos - 1, cigar=Cigar.parse(parts[5]), bases=bases, qualities=qualities,
            name=parts[0], flag=flag, mapping_quality=mapq,
            next_reference_id=reference_id if parts[6] == b'=' else self.reference_id(parts[6]),
            next_start=pnext - 1, template_length=tlen
        )


class SamWriter(BaseWriter):
    """
    Writer for SAM text files.

    Args:
        file: Output path or binary handle.
        references: Sequence dictionary ``(name, length)`` written as ``@SQ`` lines; reference ids index it.

    Examples:
        >>> with SamWriter("out.sam", [(b'chr1', 1000)]) as w:
        ...     w.write(reads)
    """
    __slots__ = ('references',)
    _QUALITY_OFFSET = 33

    def __init__(self, file: Union[str, Path, BinaryIO], references: Iterable[tuple[bytes, int]]):
        super().__init__(file)
        self.references = list(references)

    def write_header(self):
        self._handle.write(b'@HD\tVN:1.6\tSO:coordinate\n')
        for name, length in self.references: self._handle.write(b'@SQ\tSN:%s\tLN:%d\n' % (name, length))

    def _name(self, reference_id: int) -> bytes:
        return b'*' if reference_id < 0 else self.references[reference_id][0]

    def write_one(self, read: AlignedRead):
        if read.next_reference_id < 0: next_name = b'*'
        elif read.next_reference_id == read.reference_id: next_name = b'='
        else: next_name = self._name(read.next_reference_id)
        if not len(read.qualities) or np.all(read.qualities == 0xFF): qualities = b'*'
        else: qualities = (read.qualities + np.uint8(self._QUALITY_OFFSET)).tobytes()
        self._handle.write(b'\t'.join([
            read.name, b'%d' % read.flag, self._name(read.reference_id), b'%d' % (read.start + 1),
            b'%d' % read.mapping_quality, Cigar.make(read.cigar), next_name, b'%d' % (read.next_start + 1),
            b'%d' % read.template_length, read.bases or b'*', qualities
        ]) + b'\n')
