"""
Streams aligned reads into closed per-position records with bounded memory.
"""
from heapq import heappush, heappop
from typing import Iterable, Generator
from warnings import warn

from secram import SecramError, SecramWarning
from secram.core.alignment import AlignedRead
from secram.core.extractor import FeatureExtractor
from secram.core.position import PositionRecord, PositionRecordBuilder, absolute_position, reference_id_of, offset_of
from secram.utils.protocols import ReferenceProvider


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class OrderingViolationError(SecramError):
    """Raised when reads are not sorted by ascending (reference id, start)."""


class UnmappedReadWarning(SecramWarning):
    """Issued once per assembler when unmapped reads are skipped."""


# Classes --------------------------------------------------------------------------------------------------------------
class PositionRecordAssembler:
    """
    Owns the open builders of a conversion run, keyed and ordered by absolute position.

    After each read is ingested, every open position strictly below that read's start is closed: since reads arrive
    sorted by start, no later read can touch those positions again. Open builders are therefore bounded by the span
    of the reads in flight, not by genome size or depth. Records come out exactly once, in strictly ascending
    position order.

    Args:
        reference: Provides the reference base of each new position.
        extractor: Feature extractor to use (a default one is created if omitted).

    Examples:
        >>> assembler = PositionRecordAssembler(reference)
        >>> records = list(assembler.records(reads))
    """
    __slots__ = ('_reference', '_extractor', '_builders', '_heap', '_last_start', 'n_unmapped')

    def __init__(self, reference: ReferenceProvider, extractor: FeatureExtractor = None):
        self._reference = reference
        self._extractor = extractor or FeatureExtractor()
        self._builders: dict[int, PositionRecordBuilder] = {}
        self._heap: list[int] = []
        self._last_start = -1
        self.n_unmapped = 0

    def __len__(self): return len(self._builders)

    @property
    def open_positions(self) -> list[int]:
        """Absolute positions of the builders currently open, in ascending order."""
        return sorted(self._builders)

    def get_or_create(self, position: int) -> PositionRecordBuilder:
        """
        Returns the open builder for a position, creating it (and looking up its reference base) if needed.

        Raises:
            MissingReferenceError: If the reference provider cannot supply the base.
        """
        if (builder := self._builders.get(position)) is None:
            base = self._reference.base_at(reference_id_of(position), offset_of(position))
            builder = self._builders[position] = PositionRecordBuilder(position, base)
            heappush(self._heap, position)
        return builder

    def add_read(self, read: AlignedRead) -> list[PositionRecord]:
        """
        Ingests one read and closes every position that can no longer be touched.

        Args:
            read: The next read in coordinate order. Unmapped reads are skipped.

        Returns:
            The records closed by this read, in ascending position order.

        Raises:
            OrderingViolationError: If the read starts before the previous read.
            MalformedAlignmentError: If the read is malformed; no builder is modified in that case.
        """
        if read.is_unmapped:
            if not self.n_unmapped: warn('Skipping unmapped reads', UnmappedReadWarning)
            self.n_unmapped += 1
            return []
        start = absolute_position(read.reference_id, read.start)
        if start < self._last_start:
            raise OrderingViolationError(
                f'{read!r} starts before the previous read ({reference_id_of(self._last_start)}:'
                f'{offset_of(self._last_start)}); input must be coordinate sorted')
        self._last_start = start
        self._extractor.extract(read, self.get_or_create)
        return self.flush(start)

    def flush(self, low_water_mark: int) -> list[PositionRecord]:
        """Closes and returns every open position strictly below ``low_water_mark``, in ascending order."""
        closed = []
        while self._heap and self._heap[0] < low_water_mark:
            closed.append(self._builders.pop(heappop(self._heap)).close())
        return closed

    def finish(self) -> list[PositionRecord]:
        """Closes every remaining open position, in ascending order."""
        closed = []
        while self._heap: closed.append(self._builders.pop(heappop(self._heap)).close())
        return closed

    def records(self, reads: Iterable[AlignedRead]) -> Generator[PositionRecord, None, None]:
        """
        Drives a whole coordinate-sorted stream of reads through the assembler.

        Yields:
            Closed records in strictly ascending position order.
        """
        for read in reads: yield from self.add_read(read)
        yield from self.finish()
