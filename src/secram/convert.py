"""
Conversion of coordinate-sorted alignments into SECRAM files, and of SECRAM files back into alignments.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Iterable, Union
from warnings import warn

from secram import SecramWarning
from secram.codec.record import CompressionScheme
from secram.core.alignment import AlignedRead, MalformedAlignmentError
from secram.core.assembler import PositionRecordAssembler
from secram.core.reconstructor import ReadReconstructor
from secram.io.reference import FastaReference
from secram.io.sam import SamReader, SamWriter
from secram.io.secram import SecramWriter, SecramReader
from secram.utils import Config, time_string
from secram.utils.protocols import ReferenceProvider

log = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class MalformedAlignmentWarning(SecramWarning):
    """Issued when a read is rejected because its CIGAR is invalid or does not match its bases or quality scores."""


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class ConverterConfig(Config):
    """
    Settings of a conversion run.

    Attributes:
        records_per_container: Records per container (the granularity of random access).
        scheme: Column codecs of the records.
    """
    records_per_container: int = 1000
    scheme: CompressionScheme = field(default_factory=CompressionScheme)


@dataclass
class ConversionStats:
    """Counts and timing of a conversion run."""
    n_reads: int = 0
    n_rejected: int = 0
    n_unmapped: int = 0
    n_records: int = 0
    elapsed: float = 0.0


class SecramConverter:
    """
    Drives reads through the assembler and writes the closed records.

    Malformed reads are rejected with a ``MalformedAlignmentWarning`` and the run continues; a missing reference
    sequence or out-of-order input aborts it.

    Args:
        reference: Reference-base provider.
        writer: Destination of the closed records.

    Examples:
        >>> with SecramWriter("out.secram", references, key) as writer:
        ...     stats = SecramConverter(reference, writer).convert(reads)
    """
    __slots__ = ('_assembler', '_writer')

    def __init__(self, reference: ReferenceProvider, writer: SecramWriter):
        self._assembler = PositionRecordAssembler(reference)
        self._writer = writer

    def convert(self, reads: Iterable, parse: Callable[[Any], AlignedRead] = None) -> ConversionStats:
        """
        Converts a coordinate-sorted stream of reads.

        Args:
            reads: Reads, or raw rows if ``parse`` is given.
            parse: Turns a raw row into a read; a row it rejects as malformed is skipped like a malformed read.

        Raises:
            OrderingViolationError: If the reads are not coordinate sorted.
            MissingReferenceError: If a reference base cannot be looked up.
        """
        stats, start = ConversionStats(), perf_counter()
        for read in reads:
            stats.n_reads += 1
            try: closed = self._assembler.add_read(parse(read) if parse else read)
            except MalformedAlignmentError as e:
                warn(f'Rejected read: {e}', MalformedAlignmentWarning)
                stats.n_rejected += 1
                continue
            self._writer.write_all(closed)
        self._writer.write_all(self._assembler.finish())
        stats.n_unmapped = self._assembler.n_unmapped
        stats.n_records = self._writer.n_records
        stats.elapsed = perf_counter() - start
        log.debug('Converted %d reads into %d records', stats.n_reads, stats.n_records)
        return stats


# Functions ------------------------------------------------------------------------------------------------------------
def convert_file(alignments: Union[str, Path], reference: Union[str, Path], output: Union[str, Path], key: bytes,
                 config: ConverterConfig = None) -> ConversionStats:
    """
    Converts a coordinate-sorted SAM file into a SECRAM file (and its index).

    :param alignments: SAM file (optionally gzipped).
    :param reference: FASTA file holding the sequences named in the SAM header.
    :param output: SECRAM file to create.
    :param key: Master key of the position cipher.
    :param config: Conversion settings.
    :return: Conversion statistics.
    """
    config = config or ConverterConfig()
    with SamReader(alignments) as reads, FastaReference(reference, reads.references) as fasta, \
            SecramWriter(output, reads.references, key, config.scheme, config.records_per_container) as writer:
        return SecramConverter(fasta, writer).convert(reads.rows(), reads.parse_row)


def reconstruct_file(secram: Union[str, Path], output: Union[str, Path], key: bytes) -> int:
    """
    Rebuilds a SAM file from a SECRAM file.

    Unmapped and rejected reads were never stored, and read bases come back upper-case with symbols outside the
    nucleotide alphabet as N; everything else matches the converted input.

    :param secram: SECRAM file (its index must sit beside it).
    :param output: SAM file to create.
    :param key: Master key of the position cipher.
    :return: Number of reads written.
    """
    n_reads, start = 0, perf_counter()
    reader = SecramReader(secram, key)
    with SamWriter(output, reader.header.references) as writer:
        for read in ReadReconstructor().reads(reader.records()):
            writer.write_one(read)
            n_reads += 1
    log.debug('Reconstructed %d reads in %s', n_reads, time_string(perf_counter() - start))
    return n_reads
