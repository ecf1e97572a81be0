"""
Module for representing aligned reads and their CIGAR operations.
"""
from typing import Iterable, Union
from enum import IntEnum

import numpy as np

from secram import SecramError
from secram.utils.resources import jit


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class MalformedAlignmentError(SecramError):
    """Raised when a read's CIGAR does not consume exactly its bases and quality scores."""


class CigarError(MalformedAlignmentError):
    """Raised when a CIGAR string cannot be parsed."""


# Classes --------------------------------------------------------------------------------------------------------------
class CigarOp(IntEnum):
    """CIGAR operations, numbered as in BAM."""
    M = 0
    I = 1
    D = 2
    N = 3
    S = 4
    H = 5
    P = 6
    EQ = 7
    X = 8

    @property
    def symbol(self) -> bytes: return Cigar.OP_BYTES[self]
    @property
    def consumes_read(self) -> bool: return bool(Cigar.READ_CONSUMERS[self])
    @property
    def consumes_reference(self) -> bool: return bool(Cigar.REFERENCE_CONSUMERS[self])


class Cigar:
    """
    CIGAR string parser and builder.

    Examples:
        >>> Cigar.parse(b'2M1I2M')
        [(<CigarOp.M: 0>, 2), (<CigarOp.I: 1>, 1), (<CigarOp.M: 0>, 2)]
    """
    OP_BYTES = [b'M', b'I', b'D', b'N', b'S', b'H', b'P', b'=', b'X']

    _BYTE_TO_OP = np.full(256, 255, dtype=np.uint8)
    for op, sym in enumerate(OP_BYTES):
        _BYTE_TO_OP[ord(sym)] = op
    del op, sym

    # Consumption logic
    READ_CONSUMERS = np.array([True, True, False, False, True, False, False, True, True], dtype=bool)
    REFERENCE_CONSUMERS = np.array([True, False, True, True, False, False, False, True, True], dtype=bool)

    @classmethod
    def parse(cls, cigar: Union[bytes, str]) -> list[tuple[CigarOp, int]]:
        """
        Parses a CIGAR string into ``(CigarOp, length)`` pairs.

        Args:
            cigar: CIGAR string, e.g. ``b'10M2D5M'``. ``b'*'`` and ``b''`` parse to no operations.

        Returns:
            A list of operations in read order.

        Raises:
            CigarError: If the string contains unknown operators or operators without a length.
        """
        if isinstance(cigar, str): cigar = cigar.encode('ascii')
        if cigar in (b'', b'*'): return []
        if not cigar[-1:].isalpha() and cigar[-1:] != b'=':
            raise CigarError(f'CIGAR string does not end with an operator: {cigar!r}')
        ops, counts = _parse_cigar_kernel(np.frombuffer(cigar, dtype=np.uint8), cls._BYTE_TO_OP)
        if np.any(ops == 255): raise CigarError(f'Unknown operator in CIGAR string {cigar!r}')
        if np.any(counts == 0): raise CigarError(f'Operator without a length in CIGAR string {cigar!r}')
        return [(CigarOp(int(o)), int(n)) for o, n in zip(ops, counts)]

    @staticmethod
    def make(operations: Iterable[tuple[CigarOp, int]]) -> bytes:
        """Builds a CIGAR string from ``(CigarOp, length)`` pairs."""
        return b"".join([b"%d" % n + Cigar.OP_BYTES[op] for op, n in operations]) or b'*'

    @classmethod
    def read_length(cls, operations: Iterable[tuple[CigarOp, int]]) -> int:
        """Number of read bases (and quality scores) consumed by the operations."""
        return sum(n for op, n in operations if cls.READ_CONSUMERS[op])

    @classmethod
    def reference_length(cls, operations: Iterable[tuple[CigarOp, int]]) -> int:
        """Number of reference positions spanned by the operations."""
        return sum(n for op, n in operations if cls.REFERENCE_CONSUMERS[op])


class AlignedRead:
    """
    A single read aligned to a reference sequence.

    Attributes:
        reference_id (int): Index of the reference in the reference dictionary (``-1`` when unmapped).
        start (int): 0-based alignment start on the reference.
        cigar (list[tuple[CigarOp, int]]): Alignment operations in read order.
        bases (bytes): Read bases.
        qualities (np.ndarray): Per-base quality scores (``uint8``).
        name (bytes): Read name.
        flag (int): SAM flag.
        mapping_quality (int): MAPQ (255 when unavailable).
        next_reference_id (int): Reference id of the mate (``-1`` when unavailable).
        next_start (int): 0-based start of the mate (``-1`` when unavailable).
        template_length (int): Observed template length (TLEN).
    """
    __slots__ = ('reference_id', 'start', 'cigar', 'bases', 'qualities', 'name', 'flag', 'mapping_quality',
                 'next_reference_id', 'next_start', 'template_length')
    UNMAPPED_FLAG = 0x4

    def __init__(self, reference_id: int, start: int, cigar: Union[bytes, str, Iterable[tuple[CigarOp, int]]],
                 bases: bytes, qualities: Union[np.ndarray, bytes, Iterable[int]] = None, name: bytes = b'*',
                 flag: int = 0, mapping_quality: int = 255, next_reference_id: int = -1, next_start: int = -1,
                 template_length: int = 0):
        self.reference_id = reference_id
        self.start = start
        self.cigar = Cigar.parse(cigar) if isinstance(cigar, (bytes, str)) else [
            (CigarOp(op), int(n)) for op, n in cigar]
        self.bases = bases.encode('ascii') if isinstance(bases, str) else bases
        if qualities is None: qualities = np.empty(0, dtype=np.uint8)
        elif isinstance(qualities, (bytes, bytearray)): qualities = np.frombuffer(qualities, dtype=np.uint8)
        self.qualities = np.asarray(qualities, dtype=np.uint8)
        self.name = name
        self.flag = flag
        self.mapping_quality = mapping_quality
        self.next_reference_id = next_reference_id
        self.next_start = next_start
        self.template_length = template_length

    def __repr__(self):
        return (f"AlignedRead({self.name.decode('ascii', 'ignore')}, ref={self.reference_id}, "
                f"start={self.start}, cigar={Cigar.make(self.cigar).decode('ascii')})")

    def __len__(self): return len(self.bases)

    @property
    def is_unmapped(self) -> bool:
        return bool(self.flag & self.UNMAPPED_FLAG) or self.reference_id < 0 or not self.cigar

    @property
    def reference_length(self) -> int: return Cigar.reference_length(self.cigar)

    @property
    def end(self) -> int:
        """0-based exclusive end of the alignment on the reference."""
        return self.start + self.reference_length


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _parse_cigar_kernel(cigar, map_table):
    """Parses CIGAR bytes into op codes and counts."""
    n = len(cigar)
    ops = np.empty(n, dtype=np.uint8)
    counts = np.empty(n, dtype=np.int64)
    idx = 0
    curr_count = 0
    for i in range(n):
        b = cigar[i]
        if 48 <= b <= 57:
            curr_count = (curr_count * 10) + (int(b) - 48)
        else:
            ops[idx] = map_table[b]
            counts[idx] = curr_count
            idx += 1
            curr_count = 0
    return ops[:idx], counts[:idx]
