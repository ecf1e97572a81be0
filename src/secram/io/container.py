"""
The SECRAM file header and the container store that groups encoded records.

File layout::

    header      magic, version, OPE salt, compression scheme, reference dictionary
    container   n_records (u32), n_bytes (u32), then n_records x (length (u32), encoded record)
    container   ...

Containers are the unit the index points at: each index entry holds the byte offset of a container and the stored
(encrypted) position of its first record.
"""
import json
import logging
from struct import Struct
from typing import BinaryIO, Optional, Final

from secram.codec.record import CompressionScheme
from secram.crypto.ope import SALT_SIZE
from secram.io import SecramFormatError

log = logging.getLogger(__name__)


# Constants ------------------------------------------------------------------------------------------------------------
MAGIC: Final = b'SECRAM'
VERSION: Final = 2
_PREAMBLE = Struct(f'<{len(MAGIC)}sB{SALT_SIZE}s')
_U32 = Struct('<I')
_CONTAINER = Struct('<II')


# Classes --------------------------------------------------------------------------------------------------------------
class SecramHeader:
    """
    Metadata stored at the start of a SECRAM file.

    Attributes:
        salt (bytes): Per-file salt the position cipher key is derived from.
        scheme (CompressionScheme): Column codecs used by the records.
        references (list[tuple[bytes, int]]): Reference dictionary ``(name, length)``; reference ids index it.
    """
    __slots__ = ('salt', 'scheme', 'references')

    def __init__(self, salt: bytes, scheme: CompressionScheme = None, references: list[tuple[bytes, int]] = None):
        if len(salt) != SALT_SIZE: raise ValueError(f'Salt must be {SALT_SIZE} bytes, not {len(salt)}')
        self.salt = salt
        self.scheme = scheme or CompressionScheme()
        self.references = list(references or [])

    def __repr__(self): return f"SecramHeader(references={len(self.references)}, scheme={self.scheme})"

    def __eq__(self, other):
        if not isinstance(other, SecramHeader): return False
        return (self.salt, self.scheme, self.references) == (other.salt, other.scheme, other.references)

    def reference_id(self, name: bytes) -> int:
        """Returns the index of a reference name in the dictionary."""
        for i, (ref_name, _) in enumerate(self.references):
            if ref_name == name: return i
        raise KeyError(f'Reference {name!r} is not in the SECRAM header')

    def to_bytes(self) -> bytes:
        references = json.dumps([[name.decode('ascii'), length] for name, length in self.references]).encode()
        return b''.join([
            _PREAMBLE.pack(MAGIC, VERSION, self.salt), self.scheme.to_bytes(), _U32.pack(len(references)), references
        ])

    @classmethod
    def read_from(cls, handle: BinaryIO) -> 'SecramHeader':
        """
        Reads a header from the start of a SECRAM file.

        Raises:
            SecramFormatError: If the magic or version is wrong, or the header is truncated.
        """
        magic, version, salt = _PREAMBLE.unpack(_read_exactly(handle, _PREAMBLE.size))
        if magic != MAGIC: raise SecramFormatError('Not a SECRAM file (bad magic)')
        if version != VERSION: raise SecramFormatError(f'Unsupported SECRAM version {version}')
        scheme = CompressionScheme.from_bytes(_read_exactly(handle, CompressionScheme.size()))
        n_bytes, = _U32.unpack(_read_exactly(handle, _U32.size))
        references = [(name.encode('ascii'), length) for name, length in json.loads(_read_exactly(handle, n_bytes))]
        return cls(salt, scheme, references)


class ContainerWriter:
    """
    Buffers encoded records and writes them out in containers of a fixed number of records.

    Args:
        handle: Binary handle positioned after the file header.
        records_per_container: Number of records per container.
    """
    __slots__ = ('_handle', 'records_per_container', '_buffer', '_buffer_bytes', '_offset', 'n_records',
                 'n_containers')

    def __init__(self, handle: BinaryIO, records_per_container: int = 1000):
        if records_per_container < 1: raise ValueError('records_per_container must be at least 1')
        self._handle = handle
        self.records_per_container = records_per_container
        self._buffer: list[bytes] = []
        self._buffer_bytes = 0
        self._offset = handle.tell()
        self.n_records = 0
        self.n_containers = 0

    def append_record(self, data: bytes) -> Optional[int]:
        """
        Appends one encoded record.

        Returns:
            The byte offset of the container this record opens, or ``None`` if it joined an open container.
        """
        opened = None if self._buffer else self._offset
        self._buffer.append(data)
        self._buffer_bytes += _U32.size + len(data)
        self.n_records += 1
        if len(self._buffer) >= self.records_per_container: self.flush()
        return opened

    def flush(self):
        """Writes the open container, if any."""
        if not self._buffer: return
        self._handle.write(_CONTAINER.pack(len(self._buffer), self._buffer_bytes))
        for data in self._buffer:
            self._handle.write(_U32.pack(len(data)))
            self._handle.write(data)
        log.debug('Wrote container %d (%d records) at offset %d', self.n_containers, len(self._buffer), self._offset)
        self._offset += _CONTAINER.size + self._buffer_bytes
        self.n_containers += 1
        self._buffer, self._buffer_bytes = [], 0

    def close(self): self.flush()


class ContainerReader:
    """
    Reads encoded records sequentially from a container boundary onwards.

    Args:
        handle: Seekable binary handle on a SECRAM file.
    """
    __slots__ = ('_handle', '_remaining')

    def __init__(self, handle: BinaryIO):
        self._handle = handle
        self._remaining = 0

    def seek(self, offset: int):
        """Moves to a container boundary (an offset from the index, or the end of the header)."""
        self._handle.seek(offset)
        self._remaining = 0

    def read_next(self) -> Optional[bytes]:
        """
        Returns the next encoded record, crossing container boundaries, or ``None`` at the end of the file.

        Raises:
            SecramFormatError: If a container is truncated.
        """
        if not self._remaining:
            if not (head := self._handle.read(_CONTAINER.size)): return None
            if len(head) != _CONTAINER.size: raise SecramFormatError('Truncated container header')
            self._remaining, _ = _CONTAINER.unpack(head)
            if not self._remaining: return self.read_next()
        n_bytes, = _U32.unpack(_read_exactly(self._handle, _U32.size))
        self._remaining -= 1
        return _read_exactly(self._handle, n_bytes)

    def __iter__(self):
        while (data := self.read_next()) is not None: yield data


# Functions ------------------------------------------------------------------------------------------------------------
def _read_exactly(handle: BinaryIO, n: int) -> bytes:
    if len(data := handle.read(n)) != n: raise SecramFormatError(f'Expected {n} bytes, got {len(data)}')
    return data
