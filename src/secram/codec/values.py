"""
Value codecs: a closed set of ways to write one column value to a bit stream.

Every codec reports the exact number of bits a value occupies through ``number_of_bits``, independently of
``write``, and the two always agree.
"""
from enum import IntEnum
from struct import Struct
from typing import NamedTuple, Union

import numpy as np

from secram.core.alphabet import Alphabet, AlphabetError
from secram.codec.bits import BitInputStream, BitOutputStream, CodecError, pack, unpack


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class LengthRequiredError(CodecError, ValueError):
    """
    Raised when a variable-length value is read without its element count.

    Array columns never store their own length; it always travels out of band (in the record header or a sibling
    column), so reading one requires the caller to supply it.
    """


# Constants ------------------------------------------------------------------------------------------------------------
COLUMN_STRUCT = Struct('<BiB')


# Classes --------------------------------------------------------------------------------------------------------------
class BetaIntegerCodec:
    """
    Stores ``value + offset`` as an unsigned integer of a fixed bit width.

    Args:
        offset: Added to each value before writing (subtracted after reading).
        bits: Bit width of the stored value.

    Examples:
        >>> codec = BetaIntegerCodec.fit(100, 107)
        >>> codec.offset, codec.bits
        (-100, 3)
    """
    __slots__ = ('offset', 'bits')

    def __init__(self, offset: int = 0, bits: int = 32):
        if not 0 <= bits <= 64: raise CodecError(f'Bit width must be between 0 and 64, not {bits}')
        self.offset = offset
        self.bits = bits

    @classmethod
    def fit(cls, lo: int, hi: int) -> 'BetaIntegerCodec':
        """Returns the narrowest codec that can store every value in ``[lo, hi]``."""
        if hi < lo: raise CodecError(f'Empty range [{lo}, {hi}]')
        return cls(-lo, (hi - lo).bit_length())

    def __repr__(self): return f"{self.__class__.__name__}(offset={self.offset}, bits={self.bits})"
    def __eq__(self, other): return type(other) is type(self) and (self.offset, self.bits) == (other.offset, other.bits)
    def __hash__(self): return hash((type(self), self.offset, self.bits))

    @property
    def min_value(self) -> int: return -self.offset
    @property
    def max_value(self) -> int: return (1 << self.bits) - 1 - self.offset

    def number_of_bits(self, value: int) -> int: return self.bits

    def write(self, stream: BitOutputStream, value: int) -> int:
        if not self.min_value <= value <= self.max_value:
            raise CodecError(f'{value} is outside the range [{self.min_value}, {self.max_value}] of {self!r}')
        return stream.write(int(value) + self.offset, self.bits)

    def read(self, stream: BitInputStream, length: int = None) -> int:
        return stream.read(self.bits) - self.offset


class FixedIntegerCodec(BetaIntegerCodec):
    """Stores an unsigned integer in a fixed number of bits."""
    __slots__ = ()

    def __init__(self, bits: int = 32):
        super().__init__(0, bits)

    def __repr__(self): return f"FixedIntegerCodec(bits={self.bits})"


class HalfByteArrayCodec:
    """
    Packs a nucleotide string at 4 bits per base.

    The element count is not stored: ``read`` must be given the length and raises ``LengthRequiredError``
    otherwise.
    """
    __slots__ = ('alphabet',)
    BITS = 4

    def __init__(self, alphabet: Alphabet = None):
        self.alphabet = alphabet or Alphabet.NUCLEOTIDE
        if self.alphabet.bits_per_symbol > self.BITS:
            raise CodecError(f'{self.alphabet!r} does not fit in {self.BITS} bits per symbol')

    def __repr__(self): return f"HalfByteArrayCodec({self.alphabet!r})"
    def __eq__(self, other): return isinstance(other, HalfByteArrayCodec) and self.alphabet == other.alphabet
    def __hash__(self): return hash(self.alphabet)

    def number_of_bits(self, value: bytes) -> int: return len(value) * self.BITS

    def write(self, stream: BitOutputStream, value: bytes) -> int:
        try: codes = self.alphabet.encode(value)
        except AlphabetError as e: raise CodecError(str(e)) from e
        packed = pack(codes, self.BITS)
        whole = len(codes) // 2
        stream.write_bytes(packed[:whole])
        if len(codes) % 2: stream.write(int(codes[-1]), self.BITS)
        return len(codes) * self.BITS

    def read(self, stream: BitInputStream, length: int = None) -> bytes:
        """
        Reads ``length`` bases.

        Raises:
            LengthRequiredError: If ``length`` is not given.
        """
        if length is None: raise LengthRequiredError('Cannot read a half-byte array of unknown length')
        whole = length // 2
        codes = unpack(np.frombuffer(stream.read_bytes(whole), dtype=np.uint8), whole * 2, self.BITS)
        if length % 2: codes = np.append(codes, np.uint8(stream.read(self.BITS)))
        return self.alphabet.decode(codes)


class Encoding(IntEnum):
    """Identifiers of the codec variants, as stored in the file header."""
    FIXED = 0
    BETA = 1
    HALF_BYTE = 2


class ColumnSpec(NamedTuple):
    """
    Serialisable description of the codec used for one column.

    Examples:
        >>> ColumnSpec.beta(0, 20).codec()
        BetaIntegerCodec(offset=0, bits=20)
    """
    encoding: Encoding
    offset: int = 0
    bits: int = 0

    @classmethod
    def fixed(cls, bits: int) -> 'ColumnSpec': return cls(Encoding.FIXED, 0, bits)
    @classmethod
    def beta(cls, offset: int, bits: int) -> 'ColumnSpec': return cls(Encoding.BETA, offset, bits)
    @classmethod
    def half_byte(cls) -> 'ColumnSpec': return cls(Encoding.HALF_BYTE, 0, HalfByteArrayCodec.BITS)

    def codec(self) -> Union[BetaIntegerCodec, FixedIntegerCodec, HalfByteArrayCodec]:
        if self.encoding == Encoding.FIXED: return FixedIntegerCodec(self.bits)
        if self.encoding == Encoding.BETA: return BetaIntegerCodec(self.offset, self.bits)
        return HalfByteArrayCodec()

    def to_bytes(self) -> bytes: return COLUMN_STRUCT.pack(self.encoding, self.offset, self.bits)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ColumnSpec':
        encoding, offset, bits = COLUMN_STRUCT.unpack(data)
        try: encoding = Encoding(encoding)
        except ValueError as e: raise CodecError(f'Unknown column encoding {encoding}') from e
        return cls(encoding, offset, bits)
