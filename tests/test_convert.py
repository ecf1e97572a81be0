import argparse
import gzip
import warnings

import numpy as np
import pytest
from secram.cli import main, parse_region, read_key, write_key
from secram.convert import convert_file, reconstruct_file, ConverterConfig, MalformedAlignmentWarning
from secram.core.alignment import AlignedRead, CigarOp
from secram.core.assembler import UnmappedReadWarning
from secram.core.position import PositionFeature
from secram.io import SecramFormatError
from secram.io.reference import FastaReference, MissingReferenceError
from secram.io.sam import SamReader, SamWriter
from secram.io.secram import SecramReader

SAM = b"""@HD\tVN:1.6\tSO:coordinate
@SQ\tSN:chr1\tLN:40
@SQ\tSN:chr2\tLN:20
@PG\tID:test
r1\t0\tchr1\t1\t60\t4M\t*\t0\t0\tACGT\tIIII
r2\t0\tchr1\t3\t60\t2M1I2M\t*\t0\t0\tGTTAC\tIIIII
r4\t0\tchr2\t5\t60\t3M\t*\t0\t0\tAAA\t###
r5\t0\tchr2\t10\t60\t5M\t*\t0\t0\tACG\t###
r3\t4\t*\t0\t0\t*\t*\t0\t0\tACGT\t*
"""

FASTA = b""">chr1 first chromosome
ACGTACGTAC
GTACGTACGT
ACGTACGTAC
GTACGTACGT
>chr2
acgtacgtacgtacgtacgt
"""

MAPPED_SAM = b"""@HD\tVN:1.6\tSO:coordinate
@SQ\tSN:chr1\tLN:40
@SQ\tSN:chr2\tLN:20
r1\t99\tchr1\t1\t60\t4M\t=\t11\t30\tACGT\tIIII
r2\t0\tchr1\t3\t60\t2M1I2M\t*\t0\t0\tGTTAC\tIIIII
r3\t163\tchr1\t5\t37\t2S3M2D2M1H\t=\t1\t-30\tTTATGCG\tABCDEFG
r4\t0\tchr1\t11\t255\t1M2N1=1X\t*\t0\t0\tGCT\t*
r5\t0\tchr2\t2\t60\t3M2I\t*\t0\t0\tCGTAA\tIIIII
"""


@pytest.fixture
def inputs(tmp_path):
    (sam := tmp_path / 'sample.sam').write_bytes(SAM)
    (fasta := tmp_path / 'genome.fa').write_bytes(FASTA)
    return sam, fasta


class TestSamReader:
    def test_header(self, inputs):
        with SamReader(inputs[0]) as reader:
            assert reader.references == [(b'chr1', 40), (b'chr2', 20)]
            assert reader.reference_id(b'chr2') == 1
            assert reader.reference_id(b'*') == -1

    def test_reads(self, inputs):
        with SamReader(inputs[0]) as reader:
            reads = list(reader)
        assert [r.name for r in reads] == [b'r1', b'r2', b'r4', b'r5', b'r3']
        assert (reads[1].reference_id, reads[1].start) == (0, 2)
        assert reads[1].cigar == [(CigarOp.M, 2), (CigarOp.I, 1), (CigarOp.M, 2)]
        np.testing.assert_array_equal(reads[0].qualities, [40] * 4)
        np.testing.assert_array_equal(reads[4].qualities, [0xFF] * 4)
        assert reads[4].is_unmapped

    def test_gzip(self, tmp_path):
        path = tmp_path / 'sample.sam.gz'
        with gzip.open(path, 'wb') as handle: handle.write(SAM)
        with SamReader(path) as reader:
            assert len(list(reader)) == 5

    def test_unknown_reference(self, tmp_path):
        path = tmp_path / 'bad.sam'
        path.write_bytes(b'@SQ\tSN:chr1\tLN:10\nr1\t0\tchrX\t1\t60\t1M\t*\t0\t0\tA\tI\n')
        with SamReader(path) as reader, pytest.raises(SecramFormatError, match="not in the SAM header"):
            list(reader)

    def test_truncated_line(self, tmp_path):
        path = tmp_path / 'bad.sam'
        path.write_bytes(b'r1\t0\tchr1\t1\n')
        with SamReader(path) as reader, pytest.raises(SecramFormatError, match="Truncated"):
            list(reader)


class TestFastaReference:
    def test_base_at(self, inputs):
        with FastaReference(inputs[1]) as reference:
            assert reference.dictionary == [(b'chr1', 40), (b'chr2', 20)]
            assert reference.base_at(0, 0) == b'A'
            assert reference.base_at(0, 39) == b'T'
            assert reference.base_at(1, 2) == b'G'
            assert reference.base_at(0, 11) == b'T'

    def test_iter(self, inputs):
        with FastaReference(inputs[1]) as reference:
            assert dict(reference)[b'chr2'] == b'ACGT' * 5

    def test_outside_sequence(self, inputs):
        with FastaReference(inputs[1]) as reference, pytest.raises(MissingReferenceError, match="outside"):
            reference.base_at(1, 20)

    def test_missing_sequence(self, inputs):
        with FastaReference(inputs[1], [(b'chr1', 40), (b'chr3', 5)]) as reference:
            with pytest.raises(MissingReferenceError, match="chr3"):
                reference.base_at(1, 0)
            with pytest.raises(MissingReferenceError):
                reference.base_at(2, 0)

    def test_length_mismatch(self, inputs):
        with FastaReference(inputs[1], [(b'chr1', 41)]) as reference, pytest.raises(MissingReferenceError):
            reference.base_at(0, 0)


class TestConvert:
    def test_convert_file(self, inputs, tmp_path, key):
        out = tmp_path / 'sample.secram'
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            stats = convert_file(*inputs, out, key, ConverterConfig(records_per_container=4))
        categories = [w.category for w in caught]
        assert categories.count(MalformedAlignmentWarning) == 1
        assert categories.count(UnmappedReadWarning) == 1
        assert (stats.n_reads, stats.n_rejected, stats.n_unmapped, stats.n_records) == (5, 1, 1, 9)

        reader = SecramReader(out, key)
        assert reader.header.references == [(b'chr1', 40), (b'chr2', 20)]
        assert len(reader.index) == 3
        records = {(r.reference_id, r.offset): r for r in reader.records()}
        assert sorted(records) == [(0, o) for o in range(6)] + [(1, o) for o in (4, 5, 6)]
        assert records[0, 2].coverage == 2
        assert records[0, 3].features == (PositionFeature(1, CigarOp.I, 1, b'T'),)
        assert len(records[0, 3].qualities) == 3
        assert records[1, 4].features == ()
        assert records[1, 5].features == (PositionFeature(0, CigarOp.M, 1, b'A'),)
        np.testing.assert_array_equal(records[1, 5].qualities, [2])

    def test_config_from_args(self):
        class Args:
            records_per_container = 7
            unrelated = True
        assert ConverterConfig.from_args(Args()).records_per_container == 7

    def test_bad_cigar_row_is_rejected(self, inputs, tmp_path, key):
        sam = tmp_path / 'cigar.sam'
        sam.write_bytes(b'@SQ\tSN:chr1\tLN:40\n'
                        b'r1\t0\tchr1\t1\t60\t4M\t*\t0\t0\tACGT\tIIII\n'
                        b'r2\t0\tchr1\t2\t60\t4Q\t*\t0\t0\tCGTA\tIIII\n'
                        b'r3\t0\tchr1\t3\t60\t4M\t*\t0\t0\tGTAC\tIIII\n')
        with pytest.warns(MalformedAlignmentWarning, match="CIGAR"):
            stats = convert_file(sam, inputs[1], tmp_path / 'cigar.secram', key)
        assert (stats.n_reads, stats.n_rejected, stats.n_records) == (3, 1, 6)
        records = list(SecramReader(tmp_path / 'cigar.secram', key).records())
        assert [r.coverage for r in records] == [1, 1, 2, 2, 1, 1]

    def test_symbols_outside_alphabet(self, inputs, tmp_path, key):
        sam = tmp_path / 'symbols.sam'
        sam.write_bytes(b'@SQ\tSN:chr1\tLN:40\n'
                        b'r1\t0\tchr1\t1\t60\t4M\t*\t0\t0\tAC.T\tIIII\n'
                        b'r2\t0\tchr1\t1\t60\t2M1I2M\t*\t0\t0\tacuGT\tIIIII\n')
        stats = convert_file(sam, inputs[1], tmp_path / 'symbols.secram', key)
        assert (stats.n_rejected, stats.n_records) == (0, 4)
        records = list(SecramReader(tmp_path / 'symbols.secram', key).records())
        assert records[1].features == (PositionFeature(1, CigarOp.I, 1, b'N'),)
        assert records[2].features == (PositionFeature(0, CigarOp.M, 1, b'N'),)


class TestReconstruct:
    def test_sam_round_trip(self, inputs, tmp_path, key):
        sam, out, rebuilt = tmp_path / 'mapped.sam', tmp_path / 'mapped.secram', tmp_path / 'rebuilt.sam'
        sam.write_bytes(MAPPED_SAM)
        convert_file(sam, inputs[1], out, key, ConverterConfig(records_per_container=3))
        assert reconstruct_file(out, rebuilt, key) == 5
        assert rebuilt.read_bytes() == MAPPED_SAM

    def test_unmapped_and_rejected_are_dropped(self, inputs, tmp_path, key):
        out, rebuilt = tmp_path / 'sample.secram', tmp_path / 'rebuilt.sam'
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            convert_file(*inputs, out, key)
        assert reconstruct_file(out, rebuilt, key) == 3
        with SamReader(rebuilt) as reader:
            assert reader.references == [(b'chr1', 40), (b'chr2', 20)]
            assert [r.name for r in reader] == [b'r1', b'r2', b'r4']

    def test_writer_formats_mates_and_missing_qualities(self, tmp_path):
        path = tmp_path / 'out.sam'
        with SamWriter(path, [(b'chr1', 40), (b'chr2', 20)]) as writer:
            writer.write([
                AlignedRead(0, 4, b'2M', b'AC', [0xFF, 0xFF], name=b'a', next_reference_id=1, next_start=9,
                            template_length=0),
                AlignedRead(1, 0, b'2M', b'GG', b'II', name=b'b', next_reference_id=1, next_start=0),
            ])
        assert path.read_bytes().splitlines()[3:] == [
            b'a\t0\tchr1\t5\t255\t2M\tchr2\t10\t0\tAC\t*',
            b'b\t0\tchr2\t1\t255\t2M\t=\t1\t0\tGG\tII',
        ]


class TestCli:
    def test_parse_region(self):
        assert parse_region('chr1:151-171') == ('chr1', 150, 170)
        assert parse_region('chr1:1,001-2,000') == ('chr1', 1000, 1999)
        for region in ('chr1', 'chr1:0-5', 'chr1:10-5'):
            with pytest.raises(argparse.ArgumentTypeError):
                parse_region(region)

    def test_key_file(self, tmp_path, key):
        path = tmp_path / 'master.key'
        write_key(path, key)
        assert read_key(path) == key
        path.write_text('not base64!\n')
        with pytest.raises(SystemExit):
            read_key(path)

    def test_round_trip(self, inputs, tmp_path, capsys):
        keyfile, out = tmp_path / 'master.key', tmp_path / 'sample.secram'
        assert main(['keygen', str(keyfile)]) == 0
        with pytest.raises(SystemExit):
            main(['keygen', str(keyfile)])
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            assert main(['convert', str(inputs[0]), str(inputs[1]), str(out), '--key', str(keyfile)]) == 0
        assert 'Records' in capsys.readouterr().err

        main(['view', str(out), '-k', str(keyfile)])
        assert len(capsys.readouterr().out.splitlines()) == 9

        main(['query', str(out), 'chr1:3-4', '-k', str(keyfile)])
        assert capsys.readouterr().out.splitlines() == ['chr1\t3\tG\t2\t.\tII', 'chr1\t4\tT\t2\t1:I1:T\tIII']

        rebuilt = tmp_path / 'rebuilt.sam'
        assert main(['to-sam', str(out), str(rebuilt), '-k', str(keyfile)]) == 0
        assert 'Wrote 3 reads' in capsys.readouterr().err
        assert rebuilt.read_bytes().splitlines()[3:] == [SAM.splitlines()[i] for i in (4, 5, 6)]

    def test_query_unknown_reference(self, inputs, tmp_path, key):
        keyfile, out = tmp_path / 'master.key', tmp_path / 'sample.secram'
        write_key(keyfile, key)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            convert_file(*inputs, out, key)
        with pytest.raises(SystemExit):
            main(['query', str(out), 'chrX:1-10', '-k', str(keyfile)])
