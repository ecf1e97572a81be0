"""
Bit-exact serialisation of closed position records.

Layout of one encoded record (all fields MSB first, padded with zero bits to a whole byte)::

    stored position     64 bits   (the encrypted position, as written to the index)
    payload length      32 bits   (bits from here to the end of the quality scores)
    reference base      4 bits
    coverage            column ``coverage``
    feature count       column ``feature_count``
    quality count       column ``quality_count``
    read count          column ``read_count``
    features            per feature: ``coverage_index``, ``kind``, ``length``, ``bases``
    read headers        per read: ``name_length``, name (8 bits per character), ``flag``, ``mapping_quality``,
                        ``next_reference_id``, ``next_start``, ``template_length``, ``operation_count``, then
                        ``kind`` and ``length`` per CIGAR operation
    quality scores      column ``quality``, repeated

A feature's base count is implied by its kind and length, so base strings carry no length of their own.
"""
from dataclasses import dataclass, fields
from typing import Callable

import numpy as np

from secram.core.alignment import CigarOp
from secram.core.position import PositionFeature, PositionRecord, ReadHeader, feature_base_count
from secram.codec.bits import BitInputStream, BitOutputStream, CodecError
from secram.codec.values import ColumnSpec, Encoding, HalfByteArrayCodec, FixedIntegerCodec, COLUMN_STRUCT


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class CodecLengthMismatchError(CodecError):
    """Raised when the bits written or read for a record disagree with the length the codecs report."""


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True)
class CompressionScheme:
    """
    Per-column codec configuration, stored in the file header so readers decode with the writer's choices.

    The ``bases`` column holds nucleotide strings and must use the half-byte encoding; every other column holds
    integers and must not.

    Examples:
        >>> scheme = CompressionScheme(coverage=ColumnSpec.beta(0, 16))
        >>> CompressionScheme.from_bytes(scheme.to_bytes()) == scheme
        True
    """
    coverage: ColumnSpec = ColumnSpec.beta(0, 24)
    feature_count: ColumnSpec = ColumnSpec.beta(0, 24)
    quality_count: ColumnSpec = ColumnSpec.beta(0, 24)
    coverage_index: ColumnSpec = ColumnSpec.beta(0, 24)
    kind: ColumnSpec = ColumnSpec.fixed(4)
    length: ColumnSpec = ColumnSpec.beta(0, 32)
    bases: ColumnSpec = ColumnSpec.half_byte()
    quality: ColumnSpec = ColumnSpec.fixed(8)
    read_count: ColumnSpec = ColumnSpec.beta(0, 24)
    name_length: ColumnSpec = ColumnSpec.fixed(8)
    flag: ColumnSpec = ColumnSpec.fixed(16)
    mapping_quality: ColumnSpec = ColumnSpec.fixed(8)
    next_reference_id: ColumnSpec = ColumnSpec.beta(1, 32)
    next_start: ColumnSpec = ColumnSpec.beta(1, 32)
    template_length: ColumnSpec = ColumnSpec.beta((1 << 31) - 1, 32)
    operation_count: ColumnSpec = ColumnSpec.fixed(16)

    def __post_init__(self):
        for f in fields(self):
            if (getattr(self, f.name).encoding == Encoding.HALF_BYTE) != (f.name == 'bases'):
                raise CodecError(f'Only the bases column uses the half-byte encoding; got {f.name}='
                                 f'{getattr(self, f.name)}')

    @classmethod
    def size(cls) -> int: return len(fields(cls)) * COLUMN_STRUCT.size

    def to_bytes(self) -> bytes:
        return b''.join(getattr(self, f.name).to_bytes() for f in fields(self))

    @classmethod
    def from_bytes(cls, data: bytes) -> 'CompressionScheme':
        if len(data) != cls.size(): raise CodecError(f'Compression scheme must be {cls.size()} bytes, not {len(data)}')
        width = COLUMN_STRUCT.size
        return cls(**{f.name: ColumnSpec.from_bytes(data[i * width:(i + 1) * width])
                      for i, f in enumerate(fields(cls))})


class RecordCodec:
    """
    Encodes closed ``PositionRecord`` objects to bytes and back using a ``CompressionScheme``.

    Args:
        scheme: Column codec configuration.

    Examples:
        >>> codec = RecordCodec()
        >>> data = codec.encode(record, stored_position=record.position)
        >>> codec.decode(data) == record
        True
    """
    __slots__ = ('scheme', '_coverage', '_feature_count', '_quality_count', '_coverage_index', '_kind', '_length',
                 '_bases', '_quality', '_read_count', '_name_length', '_flag', '_mapping_quality',
                 '_next_reference_id', '_next_start', '_template_length', '_operation_count', '_reference_base')
    POSITION = FixedIntegerCodec(64)
    PAYLOAD = FixedIntegerCodec(32)
    HEADER_BITS = POSITION.bits + PAYLOAD.bits

    def __init__(self, scheme: CompressionScheme = None):
        self.scheme = scheme or CompressionScheme()
        for f in fields(self.scheme): setattr(self, f'_{f.name}', getattr(self.scheme, f.name).codec())
        self._reference_base = HalfByteArrayCodec()

    def _read_header_bits(self, header: ReadHeader) -> int:
        n = (self._name_length.number_of_bits(len(header.name)) + 8 * len(header.name) +
             self._flag.number_of_bits(header.flag) +
             self._mapping_quality.number_of_bits(header.mapping_quality) +
             self._next_reference_id.number_of_bits(header.next_reference_id) +
             self._next_start.number_of_bits(header.next_start) +
             self._template_length.number_of_bits(header.template_length) +
             self._operation_count.number_of_bits(len(header.cigar)))
        return n + sum(self._kind.number_of_bits(op) + self._length.number_of_bits(length)
                       for op, length in header.cigar)

    def number_of_bits(self, record: PositionRecord) -> int:
        """Bits occupied by the record's payload (everything after the 96-bit header, excluding padding)."""
        n = (self._reference_base.number_of_bits(record.reference_base) +
             self._coverage.number_of_bits(record.coverage) +
             self._feature_count.number_of_bits(len(record.features)) +
             self._quality_count.number_of_bits(len(record.qualities)) +
             self._read_count.number_of_bits(len(record.read_headers)))
        for feature in record.features:
            n += (self._coverage_index.number_of_bits(feature.coverage_index) +
                  self._kind.number_of_bits(feature.kind) +
                  self._length.number_of_bits(feature.length) +
                  self._bases.number_of_bits(feature.bases))
        n += sum(self._read_header_bits(header) for header in record.read_headers)
        return n + sum(self._quality.number_of_bits(q) for q in record.qualities)

    def encode(self, record: PositionRecord, stored_position: int = None) -> bytes:
        """
        Encodes a record.

        Args:
            record: The closed record.
            stored_position: Position written in the header (the encrypted position); defaults to the record's own.

        Returns:
            The encoded bytes.

        Raises:
            CodecError: If a value does not fit its column or a feature's bases disagree with its kind and length.
            CodecLengthMismatchError: If the bits written disagree with ``number_of_bits``.
        """
        payload_bits = self.number_of_bits(record)
        stream = BitOutputStream()
        self.POSITION.write(stream, record.position if stored_position is None else stored_position)
        self.PAYLOAD.write(stream, payload_bits)
        if len(record.reference_base) != 1:
            raise CodecError(f'Reference base must be a single symbol, not {record.reference_base!r}')
        self._reference_base.write(stream, record.reference_base)
        self._coverage.write(stream, record.coverage)
        self._feature_count.write(stream, len(record.features))
        self._quality_count.write(stream, len(record.qualities))
        self._read_count.write(stream, len(record.read_headers))
        for feature in record.features:
            if len(feature.bases) != feature.n_bases:
                raise CodecError(f'{feature} should carry {feature.n_bases} bases, not {len(feature.bases)}')
            self._coverage_index.write(stream, feature.coverage_index)
            self._kind.write(stream, feature.kind)
            self._length.write(stream, feature.length)
            self._bases.write(stream, feature.bases)
        for header in record.read_headers: self._write_read_header(stream, header)
        for q in record.qualities: self._quality.write(stream, q)
        if (written := stream.bits_written - self.HEADER_BITS) != payload_bits:
            raise CodecLengthMismatchError(f'Wrote {written} bits for {record!r}, expected {payload_bits}')
        return stream.getvalue()

    def _write_read_header(self, stream: BitOutputStream, header: ReadHeader):
        self._name_length.write(stream, len(header.name))
        stream.write_bytes(header.name)
        self._flag.write(stream, header.flag)
        self._mapping_quality.write(stream, header.mapping_quality)
        self._next_reference_id.write(stream, header.next_reference_id)
        self._next_start.write(stream, header.next_start)
        self._template_length.write(stream, header.template_length)
        self._operation_count.write(stream, len(header.cigar))
        for op, length in header.cigar:
            self._kind.write(stream, op)
            self._length.write(stream, length)

    @classmethod
    def stored_position(cls, data: bytes) -> int:
        """Reads the stored (encrypted) position of an encoded record without decoding the rest."""
        return cls.POSITION.read(BitInputStream(data[:cls.POSITION.bits // 8]))

    def decode(self, data: bytes, decrypt: Callable[[int], int] = None) -> PositionRecord:
        """
        Decodes a record.

        Args:
            data: The encoded bytes of exactly one record.
            decrypt: Maps the stored position to the plaintext position; identity if omitted.

        Returns:
            The decoded record.

        Raises:
            CodecLengthMismatchError: If the payload length in the header disagrees with the bits decoded.
            CodecError: If the data is otherwise corrupt.
        """
        stream = BitInputStream(data)
        stored = self.POSITION.read(stream)
        payload_bits = self.PAYLOAD.read(stream)
        reference_base = self._reference_base.read(stream, 1)
        coverage = self._coverage.read(stream)
        n_features = self._feature_count.read(stream)
        n_qualities = self._quality_count.read(stream)
        n_reads = self._read_count.read(stream)
        features = []
        for _ in range(n_features):
            coverage_index = self._coverage_index.read(stream)
            kind = self._read_kind(stream, stored)
            length = self._length.read(stream)
            bases = self._bases.read(stream, feature_base_count(kind, length))
            features.append(PositionFeature(coverage_index, kind, length, bases))
        read_headers = [self._read_read_header(stream, stored) for _ in range(n_reads)]
        qualities = np.array([self._quality.read(stream) for _ in range(n_qualities)], dtype=np.uint8)
        if (consumed := stream.position - self.HEADER_BITS) != payload_bits or stream.remaining >= 8:
            raise CodecLengthMismatchError(
                f'Record at {stored} declares {payload_bits} payload bits but {consumed} were decoded '
                f'({stream.remaining} bits left over)')
        position = decrypt(stored) if decrypt else stored
        return PositionRecord(position, reference_base, coverage, features, qualities, read_headers)

    def _read_kind(self, stream: BitInputStream, stored: int) -> CigarOp:
        try: return CigarOp(self._kind.read(stream))
        except ValueError as e: raise CodecError(f'Invalid CIGAR operation in record at {stored}') from e

    def _read_read_header(self, stream: BitInputStream, stored: int) -> ReadHeader:
        name = stream.read_bytes(self._name_length.read(stream))
        flag = self._flag.read(stream)
        mapping_quality = self._mapping_quality.read(stream)
        next_reference_id = self._next_reference_id.read(stream)
        next_start = self._next_start.read(stream)
        template_length = self._template_length.read(stream)
        cigar = tuple((self._read_kind(stream, stored), self._length.read(stream))
                      for _ in range(self._operation_count.read(stream)))
        return ReadHeader(name, flag, mapping_quality, cigar, next_reference_id, next_start, template_length)
