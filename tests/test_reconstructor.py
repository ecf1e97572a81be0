import pytest
from conftest import REFERENCE, matching_read
from secram.core.alignment import AlignedRead, Cigar
from secram.core.assembler import PositionRecordAssembler
from secram.core.position import PositionRecord
from secram.core.reconstructor import ReadReconstructor, ReconstructionError


def summary(read: AlignedRead) -> tuple:
    return (read.reference_id, read.start, Cigar.make(read.cigar), read.bases, read.qualities.tolist(), read.name,
            read.flag, read.mapping_quality, read.next_reference_id, read.next_start, read.template_length)


@pytest.fixture
def reads():
    return [
        AlignedRead(0, 0, b'10M', REFERENCE[:10], b'I' * 10, name=b'r1', flag=99, mapping_quality=60,
                    next_reference_id=0, next_start=8, template_length=16),
        AlignedRead(0, 2, b'3S4M1I2M', b'TTT' + b'GTTC' + b'A' + REFERENCE[6:8], b'#' * 10, name=b'r2', flag=16),
        AlignedRead(0, 2, b'2M3D2=1X2H', REFERENCE[2:4] + REFERENCE[7:9] + b'A', b'ABCDE', name=b'r3'),
        AlignedRead(0, 8, b'1M5N1M', b'AA', b'$%', name=b'r4', flag=147, next_reference_id=0, next_start=0,
                    template_length=-16),
        AlignedRead(0, 20, b'4S', b'ACGT', b'IIII', name=b'clip'),
        AlignedRead(1, 0, b'2M', b'AC', [0xFF, 0xFF], name=b'r6', mapping_quality=0),
    ]


@pytest.fixture
def records(reference, reads):
    return list(PositionRecordAssembler(reference).records(reads))


class TestRoundTrip:
    def test_reads_rebuilt(self, reads, records):
        assert [summary(r) for r in ReadReconstructor().reads(records)] == [summary(r) for r in reads]

    def test_ingestion_order(self, reference):
        long, short = matching_read(0, 20), matching_read(1, 2)
        long.name, short.name = b'long', b'short'
        records = PositionRecordAssembler(reference).records([long, short])
        assert [r.name for r in ReadReconstructor().reads(records)] == [b'long', b'short']

    def test_incremental(self, reads, records):
        reconstructor = ReadReconstructor()
        emitted = [(record.position, [r.name for r in reconstructor.add_record(record)]) for record in records]
        assert (3, [b'r3']) not in emitted
        assert (9, [b'r1', b'r2', b'r3']) in emitted
        assert [r.name for r in reconstructor.finish()] == []

    def test_normalised_bases(self, reference):
        read = AlignedRead(0, 4, b'3M', b'a.g', b'III')
        rebuilt, = ReadReconstructor().reads(PositionRecordAssembler(reference).records([read]))
        assert rebuilt.bases == b'ANG'


class TestErrors:
    def test_partial_stream(self, records):
        with pytest.raises(ReconstructionError, match="coverage"):
            list(ReadReconstructor().reads(records[5:]))

    def test_truncated_stream(self, records):
        with pytest.raises(ReconstructionError, match="past the last record"):
            list(ReadReconstructor().reads(records[:3]))

    def test_missing_position(self, records):
        with pytest.raises(ReconstructionError, match="expects position"):
            list(ReadReconstructor().reads(records[:2] + records[3:]))

    def test_out_of_order(self, records):
        reconstructor = ReadReconstructor()
        reconstructor.add_record(records[0])
        with pytest.raises(ReconstructionError, match="does not follow"):
            reconstructor.add_record(records[0])

    def test_coverage_mismatch(self, records):
        first = records[0]
        tampered = PositionRecord(first.position, first.reference_base, first.coverage + 1, first.features,
                                  first.qualities, first.read_headers)
        with pytest.raises(ReconstructionError, match="coverage"):
            ReadReconstructor().add_record(tampered)

    def test_missing_feature(self, records):
        record = next(r for r in records if r.offset == 4 and r.reference_id == 0)
        tampered = PositionRecord(record.position, record.reference_base, record.coverage,
                                  [f for f in record.features if f.kind.name != 'D'], record.qualities)
        reconstructor = ReadReconstructor()
        for earlier in records[:records.index(record)]: reconstructor.add_record(earlier)
        with pytest.raises(ReconstructionError, match="lacks the D feature"):
            reconstructor.add_record(tampered)
