"""
Module for representing the 4-bit nucleotide alphabet used to pack bases.
"""
from typing import Final, ClassVar

import numpy as np

from secram import SecramError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class AlphabetError(SecramError):
    """Raised when an alphabet is invalid or a symbol is not part of the alphabet."""


# Classes --------------------------------------------------------------------------------------------------------------
class Alphabet:
    """
    A class to represent an alphabet of ASCII symbols, each mapped to its index.

    Lookups are case-insensitive. ``encode`` fails on symbols outside the alphabet rather than dropping them,
    because a dropped base would silently shift every following base in a record.

    Examples:
        >>> Alphabet.NUCLEOTIDE.encode(b'ACGT')
        array([1, 2, 4, 8], dtype=uint8)
    """
    __slots__ = ('_data', '_lookup_table', '_decode_table')
    DTYPE: Final = np.uint8
    INVALID: Final = np.iinfo(DTYPE).max
    MAX_LEN: Final = INVALID + 1
    ENCODING: Final = 'ascii'

    NUCLEOTIDE: ClassVar['Alphabet']

    def __init__(self, symbols: bytes):
        """
        Initializes an Alphabet.

        Args:
            symbols: The symbols in the alphabet as bytes, in code order.

        Raises:
            AlphabetError: If symbols are not ASCII, too long, or contain duplicates.
        """
        if not symbols.isascii(): raise AlphabetError('Alphabet symbols must be a valid ASCII string')
        if len(symbols) >= self.MAX_LEN:
            raise AlphabetError(f'Alphabet size cannot exceed {self.MAX_LEN - 1} symbols ({self.DTYPE})')
        if len(set(symbols.upper())) != len(symbols): raise AlphabetError('Alphabet contains duplicate symbols')

        self._data: np.ndarray = np.frombuffer(symbols, dtype=self.DTYPE)

        self._lookup_table = np.full(self.MAX_LEN, self.INVALID, dtype=self.DTYPE)
        indices = np.arange(len(symbols), dtype=self.DTYPE)
        self._lookup_table[np.frombuffer(symbols, dtype=self.DTYPE)] = indices
        self._lookup_table[np.frombuffer(symbols.lower(), dtype=self.DTYPE)] = indices

        decode_map = np.zeros(self.MAX_LEN, dtype=self.DTYPE)
        decode_map[:len(self._data)] = self._data
        self._decode_table = decode_map

    def __len__(self): return len(self._data)
    def __repr__(self): return f"Alphabet({self._data.tobytes().decode(self.ENCODING)})"

    def __contains__(self, item):
        if isinstance(item, int): return 0 <= item < self.MAX_LEN and self._lookup_table[item] != self.INVALID
        if isinstance(item, (str, bytes)):
            if len(item) != 1: return False
            val = ord(item) if isinstance(item, str) else item[0]
            return val < self.MAX_LEN and self._lookup_table[val] != self.INVALID
        return False

    def __eq__(self, other):
        if self is other: return True
        if not isinstance(other, Alphabet): return False
        return np.array_equal(self._data, other._data)

    def __hash__(self): return hash(self._data.tobytes())

    @property
    def bits_per_symbol(self) -> int:
        """Returns the number of bits needed to store one symbol code."""
        return max(1, (len(self._data) - 1).bit_length())

    def encode(self, text: bytes) -> np.ndarray:
        """
        Encodes ASCII symbols into their alphabet codes.

        Args:
            text: Symbols to encode.

        Returns:
            A ``uint8`` array of codes.

        Raises:
            AlphabetError: If any symbol is not in the alphabet.
        """
        codes = self._lookup_table[np.frombuffer(text, dtype=self.DTYPE)]
        if np.any(codes == self.INVALID):
            bad = bytes(sorted(set(np.frombuffer(text, dtype=self.DTYPE)[codes == self.INVALID].tolist())))
            raise AlphabetError(f'Symbols {bad!r} are not in {self!r}')
        return codes

    def decode(self, encoded: np.ndarray) -> bytes:
        """Decodes an array of codes back into ASCII symbols."""
        if len(encoded) and int(np.max(encoded)) >= len(self._data):
            raise AlphabetError(f'Code {int(np.max(encoded))} is out of range for {self!r}')
        return self._decode_table[np.asarray(encoded, dtype=self.DTYPE)].tobytes()

    def normalise(self, text: bytes, fill: bytes) -> bytes:
        """
        Upper-cases symbols and replaces those outside the alphabet with ``fill``.

        Examples:
            >>> Alphabet.NUCLEOTIDE.normalise(b'ac.T', b'N')
            b'ACNT'
        """
        codes = self._lookup_table[np.frombuffer(text, dtype=self.DTYPE)]
        codes[codes == self.INVALID] = self.encode(fill)[0]
        return self.decode(codes)


# Constants ------------------------------------------------------------------------------------------------------------
# BAM 4-bit base ordering, so reference and read bases share one code space
Alphabet.NUCLEOTIDE = Alphabet(b'=ACMGRSVTWYHKDBN')
