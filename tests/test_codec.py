from dataclasses import fields

import numpy as np
import pytest
from secram.codec.bits import BitInputStream, BitOutputStream, CodecError, EndOfStreamError, pack, unpack
from secram.codec.record import CompressionScheme, RecordCodec, CodecLengthMismatchError
from secram.codec.values import (BetaIntegerCodec, FixedIntegerCodec, HalfByteArrayCodec, LengthRequiredError,
                                 ColumnSpec, Encoding, COLUMN_STRUCT)
from secram.core.alignment import CigarOp
from secram.core.position import PositionFeature, PositionRecord, ReadHeader, absolute_position


class TestBitStreams:
    def test_msb_first(self):
        out = BitOutputStream()
        out.write(0b101, 3)
        out.write(0b11111, 5)
        out.write(1, 1)
        assert out.bits_written == 9
        assert out.getvalue() == b'\xbf\x80'

    def test_read_back_mixed_widths(self):
        out = BitOutputStream()
        values = [(3, 2), (0, 0), (1000, 10), ((1 << 64) - 1, 64), (5, 3)]
        for value, bits in values: out.write(value, bits)
        stream = BitInputStream(out.getvalue())
        assert [stream.read(bits) for _, bits in values] == [v for v, _ in values]

    def test_unaligned_bytes(self):
        out = BitOutputStream()
        out.write(1, 4)
        out.write_bytes(b'\xab\xcd')
        stream = BitInputStream(out.getvalue())
        assert stream.read(4) == 1
        assert stream.read_bytes(2) == b'\xab\xcd'

    def test_value_too_wide(self):
        with pytest.raises(CodecError, match="does not fit"):
            BitOutputStream().write(8, 3)
        with pytest.raises(CodecError):
            BitOutputStream().write(-1, 8)

    def test_end_of_stream(self):
        stream = BitInputStream(b'\x00')
        stream.read(6)
        with pytest.raises(EndOfStreamError):
            stream.read(3)

    def test_pack_unpack(self):
        packed = pack(np.array([1, 2, 4, 8, 15], dtype=np.uint8), 4)
        np.testing.assert_array_equal(packed, [0x12, 0x48, 0xF0])
        np.testing.assert_array_equal(unpack(packed, 5, 4), [1, 2, 4, 8, 15])


class TestValueCodecs:
    def test_beta_fit(self):
        codec = BetaIntegerCodec.fit(100, 107)
        assert (codec.offset, codec.bits) == (-100, 3)
        out = BitOutputStream()
        assert codec.write(out, 107) == 3 == codec.number_of_bits(107)
        assert codec.read(BitInputStream(out.getvalue())) == 107

    def test_beta_out_of_range(self):
        codec = BetaIntegerCodec.fit(100, 107)
        with pytest.raises(CodecError, match="outside the range"):
            codec.write(BitOutputStream(), 108)
        with pytest.raises(CodecError):
            codec.write(BitOutputStream(), 99)

    def test_fixed(self):
        codec = FixedIntegerCodec(8)
        assert (codec.min_value, codec.max_value) == (0, 255)
        assert codec == FixedIntegerCodec(8) and codec != BetaIntegerCodec(0, 8)

    def test_half_byte_odd_length(self):
        codec = HalfByteArrayCodec()
        out = BitOutputStream()
        out.write(1, 1)
        assert codec.write(out, b'ACGTN') == 20 == codec.number_of_bits(b'ACGTN')
        stream = BitInputStream(out.getvalue())
        stream.read(1)
        assert codec.read(stream, 5) == b'ACGTN'

    def test_half_byte_requires_length(self):
        with pytest.raises(LengthRequiredError):
            HalfByteArrayCodec().read(BitInputStream(b'\x12'))
        assert issubclass(LengthRequiredError, ValueError)

    def test_half_byte_invalid_symbol(self):
        with pytest.raises(CodecError):
            HalfByteArrayCodec().write(BitOutputStream(), b'ACZ')

    def test_column_spec(self):
        assert ColumnSpec.beta(-3, 12).codec() == BetaIntegerCodec(-3, 12)
        assert ColumnSpec.fixed(8).codec() == FixedIntegerCodec(8)
        assert isinstance(ColumnSpec.half_byte().codec(), HalfByteArrayCodec)
        spec = ColumnSpec.beta(-3, 12)
        assert ColumnSpec.from_bytes(spec.to_bytes()) == spec

    def test_unknown_encoding(self):
        with pytest.raises(CodecError, match="Unknown column encoding"):
            ColumnSpec.from_bytes(COLUMN_STRUCT.pack(9, 0, 4))
        assert len(Encoding) == 3


class TestCompressionScheme:
    def test_bytes(self):
        scheme = CompressionScheme(coverage=ColumnSpec.beta(0, 16), quality=ColumnSpec.fixed(6))
        data = scheme.to_bytes()
        assert len(data) == CompressionScheme.size()
        assert CompressionScheme.from_bytes(data) == scheme
        assert CompressionScheme.from_bytes(data) != CompressionScheme()

    def test_wrong_size(self):
        with pytest.raises(CodecError):
            CompressionScheme.from_bytes(b'\x00' * 5)

    def test_bases_column_must_be_half_byte(self):
        with pytest.raises(CodecError, match="half-byte"):
            CompressionScheme(bases=ColumnSpec.fixed(8))
        with pytest.raises(CodecError, match="half-byte"):
            CompressionScheme(coverage=ColumnSpec.half_byte())

    def test_stored_scheme_is_validated(self):
        data = bytearray(CompressionScheme().to_bytes())
        bases = [f.name for f in fields(CompressionScheme)].index('bases') * COLUMN_STRUCT.size
        data[bases:bases + COLUMN_STRUCT.size] = ColumnSpec.fixed(8).to_bytes()
        with pytest.raises(CodecError):
            CompressionScheme.from_bytes(bytes(data))


class TestRecordCodec:
    @staticmethod
    def record(n_features=3):
        kinds = [CigarOp.M, CigarOp.I, CigarOp.D, CigarOp.S, CigarOp.H, CigarOp.N, CigarOp.P, CigarOp.X]
        features = []
        for i in range(n_features):
            kind = kinds[i % len(kinds)]
            length = 1 if kind in (CigarOp.M, CigarOp.X, CigarOp.D, CigarOp.N) else i % 7 + 1
            bases = (b'ACGTN' * 2)[:length] if kind.consumes_read else b''
            features.append(PositionFeature(i, kind, length, bases))
        qualities = np.arange(n_features + 2, dtype=np.uint8) % 60
        return PositionRecord(absolute_position(2, 12345), b'G', n_features + 1, features, qualities)

    def test_zero_features(self):
        codec = RecordCodec()
        record = PositionRecord(absolute_position(0, 7), b'A', 0)
        assert codec.decode(codec.encode(record)) == record

    def test_many_features(self):
        codec = RecordCodec()
        record = self.record(500)
        decoded = codec.decode(codec.encode(record))
        assert decoded == record
        assert decoded.features == record.features
        np.testing.assert_array_equal(decoded.qualities, record.qualities)

    def test_encoded_size(self):
        codec = RecordCodec()
        record = self.record()
        assert len(codec.encode(record)) == (RecordCodec.HEADER_BITS + codec.number_of_bits(record) + 7) // 8

    def test_stored_position(self):
        codec = RecordCodec()
        record = self.record()
        data = codec.encode(record, stored_position=(1 << 64) - 2)
        assert RecordCodec.stored_position(data) == (1 << 64) - 2
        decoded = codec.decode(data, lambda stored: record.position)
        assert decoded == record

    def test_custom_scheme(self):
        codec = RecordCodec(CompressionScheme(coverage=ColumnSpec.beta(-1, 4), quality=ColumnSpec.fixed(6)))
        record = self.record(4)
        assert codec.decode(codec.encode(record)) == record
        with pytest.raises(CodecError):
            codec.encode(PositionRecord(0, b'A', 0))

    def test_payload_length_mismatch(self):
        codec = RecordCodec()
        data = bytearray(codec.encode(self.record()))
        payload = int.from_bytes(data[8:12], 'big')
        data[8:12] = (payload + 1).to_bytes(4, 'big')
        with pytest.raises(CodecLengthMismatchError):
            codec.decode(bytes(data))

    def test_trailing_bytes(self):
        codec = RecordCodec()
        with pytest.raises(CodecLengthMismatchError):
            codec.decode(codec.encode(self.record()) + b'\x00')

    def test_feature_bases_disagree_with_kind(self):
        record = PositionRecord(0, b'A', 1, [PositionFeature(0, CigarOp.I, 2, b'A')])
        with pytest.raises(CodecError, match="should carry"):
            RecordCodec().encode(record)

    def test_reference_base_must_be_one_symbol(self):
        with pytest.raises(CodecError):
            RecordCodec().encode(PositionRecord(0, b'AC', 0))

    def test_lower_case_bases_round_trip(self):
        codec = RecordCodec()
        record = PositionRecord(5, b'a', 1, [PositionFeature(0, CigarOp.I, 2, b'gt')], [30, 30])
        assert record.reference_base == b'A'
        assert record.features == (PositionFeature(0, CigarOp.I, 2, b'GT'),)
        assert codec.decode(codec.encode(record)) == record

    def test_read_headers(self):
        codec = RecordCodec()
        headers = [
            ReadHeader(b'read/1', 99, 60, ((CigarOp.S, 3), (CigarOp.M, 100), (CigarOp.H, 2)), 0, 1_000_000, 350),
            ReadHeader(b'read/2', 147, 0, ((CigarOp.M, 5),), 3, 12, -350),
            ReadHeader(b'x' * 254, 4095, 255, (), -1, -1, 0),
        ]
        record = PositionRecord(absolute_position(0, 9), b'C', 3, qualities=[1, 2, 3], read_headers=headers)
        decoded = codec.decode(codec.encode(record))
        assert decoded == record
        assert decoded.read_headers == tuple(headers)
        assert len(codec.encode(record)) == (RecordCodec.HEADER_BITS + codec.number_of_bits(record) + 7) // 8

    def test_read_name_too_long(self):
        record = PositionRecord(0, b'A', 1, read_headers=[ReadHeader(b'x' * 256)])
        with pytest.raises(CodecError):
            RecordCodec().encode(record)
