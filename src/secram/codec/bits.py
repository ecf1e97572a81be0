"""
MSB-first bit streams over in-memory byte buffers.
"""
from typing import Union

import numpy as np

from secram import SecramError
from secram.utils.resources import jit


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class CodecError(SecramError):
    """Raised when a value cannot be encoded or decoded."""


class EndOfStreamError(CodecError):
    """Raised when reading past the end of a bit stream."""


# Classes --------------------------------------------------------------------------------------------------------------
class BitOutputStream:
    """
    Accumulates values of arbitrary bit widths, most significant bit first.

    Examples:
        >>> out = BitOutputStream()
        >>> out.write(0b101, 3) + out.write(0b11111, 5)
        8
        >>> out.getvalue()
        b'\\xbf'
    """
    __slots__ = ('_buffer', '_acc', '_n_acc')

    def __init__(self):
        self._buffer = bytearray()
        self._acc = 0  # Pending bits, fewer than 8
        self._n_acc = 0

    def __len__(self): return self.bits_written

    @property
    def bits_written(self) -> int: return len(self._buffer) * 8 + self._n_acc
    @property
    def aligned(self) -> bool: return self._n_acc == 0

    def write(self, value: int, n_bits: int) -> int:
        """
        Writes the ``n_bits`` low bits of a non-negative integer.

        Returns:
            The number of bits written.

        Raises:
            CodecError: If the value is negative or does not fit in ``n_bits``.
        """
        value = int(value)
        if n_bits == 0:
            if value: raise CodecError(f'Cannot write {value} in 0 bits')
            return 0
        if value < 0 or value >> n_bits: raise CodecError(f'Value {value} does not fit in {n_bits} bits')
        acc = (self._acc << n_bits) | value
        n = self._n_acc + n_bits
        while n >= 8:
            n -= 8
            self._buffer.append((acc >> n) & 0xFF)
        self._acc = acc & ((1 << n) - 1)
        self._n_acc = n
        return n_bits

    def write_bytes(self, data: Union[bytes, np.ndarray]) -> int:
        """Writes whole bytes, copying directly when the stream is byte aligned."""
        if isinstance(data, np.ndarray): data = data.tobytes()
        if self.aligned: self._buffer.extend(data)
        else:
            for b in data: self.write(b, 8)
        return len(data) * 8

    def getvalue(self) -> bytes:
        """Returns the bytes written so far, with the last partial byte zero padded."""
        if not self._n_acc: return bytes(self._buffer)
        return bytes(self._buffer) + bytes([self._acc << (8 - self._n_acc)])


class BitInputStream:
    """
    Reads values of arbitrary bit widths from a byte buffer, most significant bit first.

    Examples:
        >>> stream = BitInputStream(b'\\xbf')
        >>> stream.read(3), stream.read(5)
        (5, 31)
    """
    __slots__ = ('_data', '_position')

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._position = 0

    @property
    def position(self) -> int:
        """Number of bits consumed."""
        return self._position

    @property
    def remaining(self) -> int: return len(self._data) * 8 - self._position
    @property
    def aligned(self) -> bool: return self._position % 8 == 0

    def read(self, n_bits: int) -> int:
        """
        Reads an ``n_bits`` wide unsigned integer.

        Raises:
            EndOfStreamError: If fewer than ``n_bits`` bits remain.
        """
        if n_bits == 0: return 0
        if n_bits > self.remaining:
            raise EndOfStreamError(f'Cannot read {n_bits} bits, only {self.remaining} remain')
        start, end = self._position // 8, (self._position + n_bits + 7) // 8
        chunk = int.from_bytes(self._data[start:end], 'big')
        shift = (end - start) * 8 - (self._position % 8) - n_bits
        self._position += n_bits
        return (chunk >> shift) & ((1 << n_bits) - 1)

    def read_bytes(self, n: int) -> bytes:
        """Reads ``n`` whole bytes, slicing directly when the stream is byte aligned."""
        if not self.aligned: return bytes(self.read(8) for _ in range(n))
        if n * 8 > self.remaining:
            raise EndOfStreamError(f'Cannot read {n} bytes, only {self.remaining} bits remain')
        start = self._position // 8
        self._position += n * 8
        return self._data[start:start + n]


# Functions ------------------------------------------------------------------------------------------------------------
def pack(codes: np.ndarray, bits: int) -> np.ndarray:
    """Packs small integer codes into bytes, ``8 // bits`` per byte, first code in the high bits."""
    return _pack_kernel(np.ascontiguousarray(codes, dtype=np.uint8), len(codes), bits)


def unpack(packed: np.ndarray, length: int, bits: int) -> np.ndarray:
    """Inverse of ``pack``."""
    return _unpack_kernel(np.ascontiguousarray(packed, dtype=np.uint8), length, bits)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _pack_kernel(data, length, bits):
    per_byte = 8 // bits
    n_bytes = (length + per_byte - 1) // per_byte
    out = np.zeros(n_bytes, dtype=np.uint8)

    for i in range(length):
        byte_idx = i // per_byte
        bit_offset = (per_byte - 1 - (i % per_byte)) * bits
        out[byte_idx] |= (data[i] << bit_offset)
    return out


@jit(nopython=True, cache=True, nogil=True)
def _unpack_kernel(packed, length, bits):
    out = np.empty(length, dtype=np.uint8)
    per_byte = 8 // bits
    mask = (1 << bits) - 1

    for i in range(length):
        byte_idx = i // per_byte
        bit_offset = (per_byte - 1 - (i % per_byte)) * bits
        out[i] = (packed[byte_idx] >> bit_offset) & mask
    return out
