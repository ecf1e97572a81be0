"""
Walks a read's CIGAR operations and routes position-anchored features and quality scores into per-position builders.
"""
from typing import Callable

from secram.core.alignment import AlignedRead, Cigar, CigarOp, MalformedAlignmentError
from secram.core.alphabet import Alphabet
from secram.core.position import PositionFeature, PositionRecordBuilder, ReadHeader, absolute_position


# Classes --------------------------------------------------------------------------------------------------------------
class FeatureExtractor:
    """
    Converts one aligned read into features on the builders of the positions it touches.

    Reference-matching bases are not stored: an aligned base only produces a feature when it differs from the
    reference base of its position. Insertions and clips are anchored at the position preceding them (or the
    alignment start for leading clips), deletions and skips produce one length-1 feature per position.

    The extractor holds no state between reads; builders are reached only through the ``builder_for`` accessor
    supplied by the caller.

    Examples:
        >>> builders = {}
        >>> def builder_for(pos): return builders.setdefault(pos, PositionRecordBuilder(pos, b'A'))
        >>> FeatureExtractor().extract(AlignedRead(0, 100, b'2M', b'AC', b'II'), builder_for)
        101
        >>> builders[101].features
        [PositionFeature(coverage_index=0, kind=<CigarOp.M: 0>, length=1, bases=b'C')]
    """
    __slots__ = ()
    _ANCHORED = frozenset({CigarOp.I, CigarOp.S, CigarOp.H, CigarOp.P})
    _GAPS = frozenset({CigarOp.D, CigarOp.N})

    @staticmethod
    def validate(read: AlignedRead):
        """
        Checks that the CIGAR consumes exactly the read's bases and quality scores.

        Raises:
            MalformedAlignmentError: If either count disagrees.
        """
        expected = Cigar.read_length(read.cigar)
        if expected != len(read.bases):
            raise MalformedAlignmentError(
                f'{read!r}: CIGAR consumes {expected} bases but the read has {len(read.bases)}')
        if expected != len(read.qualities):
            raise MalformedAlignmentError(
                f'{read!r}: CIGAR consumes {expected} quality scores but the read has {len(read.qualities)}')

    @staticmethod
    def normalise(bases: bytes) -> bytes:
        """Upper-cases read bases and maps symbols the nucleotide alphabet cannot store (``.``, ``X``, ``U``) to N."""
        return Alphabet.NUCLEOTIDE.normalise(bases, b'N')

    def extract(self, read: AlignedRead, builder_for: Callable[[int], PositionRecordBuilder]) -> int:
        """
        Adds the read's features and quality scores to the builders of the positions it touches.

        The read is validated before any builder is touched, so a rejected read leaves no partial effects. Bases are
        normalised first, so every stored base fits the nucleotide codec. The read's header is recorded at its
        start position.

        Args:
            read: The aligned read.
            builder_for: Returns the (possibly new) builder for an absolute position.

        Returns:
            The last absolute position touched by the read.

        Raises:
            MalformedAlignmentError: If the CIGAR does not consume exactly the read's bases and quality scores.
        """
        self.validate(read)
        bases, qualities = self.normalise(read.bases), read.qualities
        position = absolute_position(read.reference_id, read.start)
        builder = builder_for(position)
        builder.add_read_header(ReadHeader.from_read(read))
        pending: list[PositionFeature] = []
        cursor = 0  # Bases and quality scores are consumed in lockstep
        starting = True

        for op, length in read.cigar:
            if op in self._ANCHORED:
                if op.consumes_read:
                    pending.append(PositionFeature(builder.coverage, op, length, bases[cursor:cursor + length]))
                    builder.add_qualities(qualities[cursor:cursor + length])
                    cursor += length
                else:
                    pending.append(PositionFeature(builder.coverage, op, length))
                continue

            for _ in range(length):
                if starting: starting = False
                else:
                    builder.add_read_features(pending)
                    position += 1
                    builder = builder_for(position)
                    pending = []

                if op in self._GAPS:
                    pending.append(PositionFeature(builder.coverage, op, 1))
                    continue

                base = bases[cursor:cursor + 1]
                if base != builder.reference_base:
                    pending.append(PositionFeature(builder.coverage, op, 1, base))
                builder.add_qualities(qualities[cursor:cursor + 1])
                cursor += 1

        builder.add_read_features(pending)
        if cursor != len(bases) or cursor != len(qualities):
            raise MalformedAlignmentError(f'{read!r}: consumed {cursor} of {len(bases)} bases')
        return position
