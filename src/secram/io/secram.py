"""
Writing SECRAM files and querying them by (encrypted) position range.
"""
from pathlib import Path
from typing import Union, Generator, Optional, Iterable

from secram.codec.record import RecordCodec, CompressionScheme
from secram.core.position import PositionRecord, absolute_position
from secram.crypto.ope import PositionCipher, new_salt
from secram.io.container import SecramHeader, ContainerWriter, ContainerReader
from secram.io.index import PositionIndex
from secram.utils.protocols import RecordSink, RecordSource


# Classes --------------------------------------------------------------------------------------------------------------
class SecramWriter:
    """
    Writes closed position records to a SECRAM file and its ``.secrai`` index.

    Records must be written in strictly ascending position order (the order the assembler emits them). Each record
    is stored under its encrypted position; every container boundary adds one index entry.

    Args:
        path: Output SECRAM path; the index is written beside it.
        references: Reference dictionary ``(name, length)``.
        key: Master key of the position cipher.
        scheme: Column codecs (defaults to ``CompressionScheme()``).
        records_per_container: Records per container, i.e. the granularity of random access.
        salt: Per-file salt (random if omitted).

    Examples:
        >>> with SecramWriter("out.secram", [(b'chr1', 1000)], key) as writer:
        ...     writer.write_all(records)
    """
    __slots__ = ('path', 'header', '_handle', '_cipher', '_codec', '_containers', 'index', '_last_position',
                 '_n_records')

    def __init__(self, path: Union[str, Path], references: Iterable[tuple[bytes, int]], key: bytes,
                 scheme: CompressionScheme = None, records_per_container: int = 1000, salt: bytes = None):
        self.path = Path(path)
        self.header = SecramHeader(salt or new_salt(), scheme, list(references))
        self._cipher = PositionCipher(key)
        self._cipher.init_session(self.header.salt)
        self._codec = RecordCodec(self.header.scheme)
        self.index = PositionIndex()
        self._last_position = -1
        self._n_records = 0
        self._handle = open(self.path, 'wb')
        self._handle.write(self.header.to_bytes())
        self._containers: RecordSink = ContainerWriter(self._handle, records_per_container)

    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()

    @property
    def n_records(self) -> int: return self._n_records

    def write(self, record: PositionRecord):
        """
        Encrypts, encodes and appends one record.

        Raises:
            ValueError: If the record does not follow the previous one in position order.
            CodecError: If the record does not fit the compression scheme.
        """
        if record.position <= self._last_position:
            raise ValueError(f'{record!r} is not after the previously written position {self._last_position}')
        stored = self._cipher.encrypt(record.position)
        if (offset := self._containers.append_record(self._codec.encode(record, stored))) is not None:
            self.index.add(stored, offset)
        self._last_position = record.position
        self._n_records += 1

    def write_all(self, records: Iterable[PositionRecord]):
        for record in records: self.write(record)

    def close(self):
        """Writes any open container, the index, and closes the file."""
        if self._handle.closed: return
        self._containers.close()
        self._handle.close()
        self.index.save(PositionIndex.path_for(self.path))


class SecramReader:
    """
    Reads a SECRAM file sequentially or by position range.

    Range queries encrypt the lower bound, find the container at or before it in the index, and decode forwards,
    stopping at the first record past the upper bound. Each query opens its own file handle, which is closed when
    the returned generator is exhausted or closed, so results may be abandoned at any point.

    Args:
        path: SECRAM file.
        key: Master key of the position cipher.
        index_path: Index file (defaults to ``<path>.secrai``).

    Examples:
        >>> reader = SecramReader("sample.secram", key)
        >>> for record in reader.query_reference(b'chr1', 150, 170):
        ...     print(record.offset, record.coverage)
    """
    __slots__ = ('path', 'header', 'index', '_cipher', '_codec', '_data_offset')

    def __init__(self, path: Union[str, Path], key: bytes, index_path: Union[str, Path] = None):
        self.path = Path(path)
        with open(self.path, 'rb') as handle:
            self.header = SecramHeader.read_from(handle)
            self._data_offset = handle.tell()
        self.index = PositionIndex.load(index_path or PositionIndex.path_for(self.path))
        self._cipher = PositionCipher(key)
        self._cipher.init_session(self.header.salt)
        self._codec = RecordCodec(self.header.scheme)

    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): pass

    @property
    def cipher(self) -> PositionCipher: return self._cipher

    def records(self) -> Generator[PositionRecord, None, None]:
        """Yields every record in the file, in ascending position order."""
        for data in self._scan(self._data_offset):
            yield self._codec.decode(data, self._cipher.decrypt)

    def query(self, start: int, end: int) -> Generator[PositionRecord, None, None]:
        """
        Yields the records with ``start <= position <= end`` (plaintext absolute positions), ascending.

        A ``start`` before all data is not an error and does not yield nothing: the scan deliberately starts at the
        first container, so a range straddling the first record still returns the records inside it. An empty file
        yields nothing.
        """
        offset = self._seek_offset(self._cipher.encrypt(start))
        if offset is None: return
        for data in self._scan(offset):
            position = self._cipher.decrypt(RecordCodec.stored_position(data))
            if position > end: return
            if position >= start: yield self._codec.decode(data, lambda _: position)

    def query_reference(self, name: Union[bytes, str], start: int, end: int) -> Generator[PositionRecord, None, None]:
        """
        Yields the records of one reference with 0-based ``start <= offset <= end``.

        Raises:
            KeyError: If the reference is not in the header.
        """
        if isinstance(name, str): name = name.encode('ascii')
        reference_id = self.header.reference_id(name)
        return self.query(absolute_position(reference_id, start), absolute_position(reference_id, end))

    def query_encrypted(self, start: int, end: int) -> Generator[PositionRecord, None, None]:
        """
        Yields the records whose encrypted position lies in ``[start, end]``, for callers that only hold
        ciphertext bounds. Bounds are compared in the encrypted domain; records are decrypted as they are yielded.
        """
        offset = self._seek_offset(start)
        if offset is None: return
        for data in self._scan(offset):
            stored = RecordCodec.stored_position(data)
            if stored > end: return
            if stored >= start: yield self._codec.decode(data, self._cipher.decrypt)

    def _seek_offset(self, encrypted_start: int) -> Optional[int]:
        if (offset := self.index.offset_for(encrypted_start)) is None: return self.index.first_offset
        return offset

    def _scan(self, offset: int) -> Generator[bytes, None, None]:
        with open(self.path, 'rb') as handle:
            reader: RecordSource = ContainerReader(handle)
            reader.seek(offset)
            while (data := reader.read_next()) is not None: yield data
