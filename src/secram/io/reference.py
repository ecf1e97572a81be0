"""
Reference-base lookup backed by a FASTA file.
"""
from pathlib import Path
from typing import Union, BinaryIO, Generator, Iterable

from secram import SecramError
from secram.core.alphabet import Alphabet
from secram.io import BaseReader


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class MissingReferenceError(SecramError, LookupError):
    """Raised when a reference sequence is absent, has the wrong length, or does not cover a position."""


# Classes --------------------------------------------------------------------------------------------------------------
class FastaReference(BaseReader):
    """
    Looks up reference bases by (reference id, offset).

    Reference ids index ``dictionary``, the ``(name, length)`` list of the alignment file's header. The FASTA file is
    scanned once for record offsets; sequences are then loaded one at a time and the most recent one is cached, so
    coordinate-sorted input reads each sequence once. Bases are upper-cased on load, and symbols outside the
    nucleotide alphabet become N.

    Args:
        file: FASTA path or seekable binary handle.
        dictionary: ``(name, length)`` pairs; if omitted, the FASTA records define the dictionary in file order.

    Examples:
        >>> reference = FastaReference('genome.fa', [(b'chr1', 248956422)])
        >>> reference.base_at(0, 10000)
        b'T'
    """
    __slots__ = ('_offsets', 'dictionary', '_cached_id', '_cached_seq')

    def __init__(self, file: Union[str, Path, BinaryIO], dictionary: Iterable[tuple[bytes, int]] = None):
        super().__init__(file)
        self._offsets: dict[bytes, int] = {}
        self._cached_id = -1
        self._cached_seq = b''
        lengths = self._scan()
        self.dictionary = list(dictionary) if dictionary is not None else list(lengths.items())

    def _scan(self) -> dict[bytes, int]:
        """Records where each sequence starts, returning the sequence lengths."""
        lengths, name = {}, None
        self._handle.seek(0)
        while line := self._handle.readline():
            if line.startswith(b'>'):
                name = line[1:].split(None, 1)[0] if line[1:].strip() else b''
                self._offsets[name] = self._handle.tell()
                lengths[name] = 0
            elif name is not None:
                lengths[name] += len(line.strip())
        return lengths

    def __iter__(self) -> Generator[tuple[bytes, bytes], None, None]:
        """Yields ``(name, sequence)`` for every reference in the dictionary."""
        for name, _ in self.dictionary: yield name, self._load(name)

    def _load(self, name: bytes) -> bytes:
        if (offset := self._offsets.get(name)) is None:
            raise MissingReferenceError(f'Could not find the reference sequence {name!r} in the FASTA file')
        self._handle.seek(offset)
        parts = []
        while (line := self._handle.readline()) and not line.startswith(b'>'): parts.append(line.strip())
        return Alphabet.NUCLEOTIDE.normalise(b''.join(parts), b'N')

    def sequence(self, reference_id: int) -> bytes:
        """
        Returns the full sequence of a reference, loading it if it is not the cached one.

        Raises:
            MissingReferenceError: If the id is unknown, the sequence is absent, or its length disagrees with
                the dictionary.
        """
        if reference_id == self._cached_id: return self._cached_seq
        if not 0 <= reference_id < len(self.dictionary):
            raise MissingReferenceError(f'Reference id {reference_id} is not in the sequence dictionary')
        name, length = self.dictionary[reference_id]
        seq = self._load(name)
        if len(seq) != length:
            raise MissingReferenceError(f'Reference sequence {name!r} has length {len(seq)}, expected {length}')
        self._cached_id, self._cached_seq = reference_id, seq
        return seq

    def base_at(self, reference_id: int, offset: int) -> bytes:
        """
        Returns the upper-case reference base at a 0-based offset.

        Raises:
            MissingReferenceError: If the sequence is unavailable or does not cover the offset.
        """
        seq = self.sequence(reference_id)
        if not 0 <= offset < len(seq):
            raise MissingReferenceError(f'Offset {offset} is outside reference {reference_id} (length {len(seq)})')
        return seq[offset:offset + 1]
