"""
Rebuilds aligned reads from a complete, ascending stream of position records.
"""
from typing import Generator, Iterable, Iterator

import numpy as np

from secram import SecramError
from secram.core.alignment import AlignedRead, CigarOp
from secram.core.position import (PositionFeature, PositionRecord, ReadHeader, reference_id_of, offset_of,
                                  feature_base_count)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ReconstructionError(SecramError):
    """Raised when records do not describe a consistent set of reads (e.g. a partial or corrupt stream)."""


# Classes --------------------------------------------------------------------------------------------------------------
class _ReadState:
    """A read whose start record has been seen but whose last position has not."""
    __slots__ = ('header', 'start', 'steps', 'remaining', 'bases', 'qualities')

    def __init__(self, header: ReadHeader, start: int):
        self.header = header
        self.start = start
        self.steps = _steps(header.cigar)
        self.remaining = header.span
        self.bases = bytearray()
        self.qualities: list[np.ndarray] = []

    @property
    def next_position(self) -> int: return self.start + self.header.span - self.remaining

    def to_read(self) -> AlignedRead:
        qualities = np.concatenate(self.qualities) if self.qualities else np.empty(0, dtype=np.uint8)
        return AlignedRead(
            reference_id_of(self.start), offset_of(self.start), list(self.header.cigar), bytes(self.bases), qualities,
            name=self.header.name, flag=self.header.flag, mapping_quality=self.header.mapping_quality,
            next_reference_id=self.header.next_reference_id, next_start=self.header.next_start,
            template_length=self.header.template_length
        )


class ReadReconstructor:
    """
    Replays each read's CIGAR over the records it spans to recover its bases and quality scores.

    A read's coverage index at a position is its rank, in ingestion order, among the reads touching that position,
    so tracking the reads in flight is enough to attribute every feature and quality score. Aligned bases without a
    feature match the reference. Reads come out in the order they were ingested.

    Examples:
        >>> reads = list(ReadReconstructor().reads(secram_reader.records()))
    """
    __slots__ = ('_active', '_started', '_last_position')
    _ALIGNED = frozenset({CigarOp.M, CigarOp.EQ, CigarOp.X})

    def __init__(self):
        self._active: list[_ReadState] = []
        self._started: list[_ReadState] = []
        self._last_position = -1

    def add_record(self, record: PositionRecord) -> list[AlignedRead]:
        """
        Consumes the next record and returns the reads that became complete, in ingestion order.

        Raises:
            ReconstructionError: If the record is out of order, skips a position a read needs, or its coverage,
                features or quality scores disagree with the reads in flight.
        """
        if record.position <= self._last_position:
            raise ReconstructionError(f'{record!r} does not follow position {self._last_position}')
        self._last_position = record.position
        for state in self._active:
            if state.next_position != record.position:
                raise ReconstructionError(
                    f'Read {state.header.name!r} expects position {state.next_position}, got {record!r}')
        for header in record.read_headers:
            state = _ReadState(header, record.position)
            self._active.append(state)
            self._started.append(state)
        if len(self._active) != record.coverage:
            raise ReconstructionError(f'{record!r} has coverage {record.coverage} but {len(self._active)} reads')

        by_read: list[list[PositionFeature]] = [[] for _ in self._active]
        for feature in record.features:
            if feature.coverage_index >= len(by_read):
                raise ReconstructionError(f'{feature} in {record!r} refers to a read not in flight')
            by_read[feature.coverage_index].append(feature)

        cursor = 0
        for state, features in zip(self._active, by_read):
            cursor = self._replay(record, state, next(state.steps), iter(features), cursor)
            state.remaining -= 1
        if cursor != len(record.qualities):
            raise ReconstructionError(f'{record!r} holds {len(record.qualities)} quality scores, reads used {cursor}')
        self._active = [state for state in self._active if state.remaining]
        return self._complete()

    def _replay(self, record: PositionRecord, state: _ReadState, step: list[tuple[CigarOp, int]],
                features: Iterator[PositionFeature], cursor: int) -> int:
        pending = next(features, None)
        for op, length in step:
            if op in self._ALIGNED:
                if pending is not None and pending.kind == op:
                    state.bases += pending.bases
                    pending = next(features, None)
                else:
                    state.bases += record.reference_base
            else:
                if pending is None or pending.kind != op or pending.length != length:
                    raise ReconstructionError(f'{record!r} lacks the {op.name} feature of {state.header.name!r}')
                state.bases += pending.bases
                pending = next(features, None)
            n = length if op in self._ALIGNED else feature_base_count(op, length)
            if n:
                state.qualities.append(record.qualities[cursor:cursor + n])
                cursor += n
        if pending is not None:
            raise ReconstructionError(f'{record!r} has unexpected feature {pending} for {state.header.name!r}')
        return cursor

    def _complete(self) -> list[AlignedRead]:
        done = 0
        while done < len(self._started) and not self._started[done].remaining: done += 1
        complete, self._started = self._started[:done], self._started[done:]
        return [state.to_read() for state in complete]

    def finish(self) -> list[AlignedRead]:
        """
        Returns the reads still waiting for earlier reads to complete.

        Raises:
            ReconstructionError: If a read's span extends past the last record.
        """
        if self._active:
            raise ReconstructionError(f'{len(self._active)} reads extend past the last record')
        return self._complete()

    def reads(self, records: Iterable[PositionRecord]) -> Generator[AlignedRead, None, None]:
        """
        Drives a whole ascending stream of records through the reconstructor.

        Yields:
            Reads in ingestion (coordinate) order.
        """
        for record in records: yield from self.add_record(record)
        yield from self.finish()


# Functions ------------------------------------------------------------------------------------------------------------
def _steps(cigar: Iterable[tuple[CigarOp, int]]) -> Generator[list[tuple[CigarOp, int]], None, None]:
    """
    Splits a CIGAR into the operations handled at each touched position, mirroring how features are anchored:
    clips and insertions stay with the preceding position (or the start), reference steps advance one at a time.
    """
    current, started = [], False
    for op, length in cigar:
        if not op.consumes_reference:
            current.append((op, length))
            continue
        for _ in range(length):
            if started:
                yield current
                current = []
            started = True
            current.append((op, 1))
    yield current
