"""
Per-position ("pileup") records: the features anchored at one reference position, the mutable builder that
accumulates them while reads are in flight, and the immutable record it closes into.
"""
from typing import Iterable, NamedTuple, Final

import numpy as np

from secram.core.alignment import AlignedRead, Cigar, CigarOp


# Constants ------------------------------------------------------------------------------------------------------------
OFFSET_BITS: Final = 32
OFFSET_MASK: Final = (1 << OFFSET_BITS) - 1
MAX_POSITION: Final = (1 << 63) - 1


# Functions ------------------------------------------------------------------------------------------------------------
def absolute_position(reference_id: int, offset: int) -> int:
    """
    Combines a reference id and a 0-based offset into a single totally ordered key.

    Examples:
        >>> absolute_position(1, 5)
        4294967301
    """
    if not 0 <= offset <= OFFSET_MASK: raise ValueError(f'Offset {offset} does not fit in {OFFSET_BITS} bits')
    if not 0 <= reference_id <= MAX_POSITION >> OFFSET_BITS: raise ValueError(f'Invalid reference id {reference_id}')
    return (reference_id << OFFSET_BITS) | offset


def reference_id_of(position: int) -> int: return position >> OFFSET_BITS
def offset_of(position: int) -> int: return position & OFFSET_MASK


# Classes --------------------------------------------------------------------------------------------------------------
class PositionFeature(NamedTuple):
    """
    A deviation from the reference (or a clip/insertion event) anchored at one position.

    Attributes:
        coverage_index: Ordinal of the read that produced it among the reads touching the position.
        kind: The CIGAR operation that produced it.
        length: Operation length (1 for substitutions, deletions and skips).
        bases: Read bases carried by the feature, empty for deletions, skips, hard clips and padding.
    """
    coverage_index: int
    kind: CigarOp
    length: int
    bases: bytes = b''

    @property
    def n_bases(self) -> int:
        """Number of bases this feature carries, implied by its kind and length."""
        return feature_base_count(self.kind, self.length)


def feature_base_count(kind: CigarOp, length: int) -> int:
    """Number of read bases a feature of this kind and length carries."""
    return length if kind.consumes_read else 0


class ReadHeader(NamedTuple):
    """
    The fields of a read that its per-position features do not capture, stored at the read's start position.

    Together with the features and quality scores of the positions the read spans, a header is enough to rebuild
    the read's SAM line.

    Attributes:
        name: Read name.
        flag: SAM flag.
        mapping_quality: MAPQ (255 when unavailable).
        cigar: Alignment operations in read order.
        next_reference_id: Reference id of the mate (``-1`` when unavailable).
        next_start: 0-based start of the mate (``-1`` when unavailable).
        template_length: Observed template length.
    """
    name: bytes
    flag: int = 0
    mapping_quality: int = 255
    cigar: tuple[tuple[CigarOp, int], ...] = ()
    next_reference_id: int = -1
    next_start: int = -1
    template_length: int = 0

    @classmethod
    def from_read(cls, read: AlignedRead) -> 'ReadHeader':
        return cls(read.name, read.flag, read.mapping_quality, tuple((op, n) for op, n in read.cigar),
                   read.next_reference_id, read.next_start, read.template_length)

    @property
    def span(self) -> int:
        """Number of positions the read touches (a read that consumes no reference still touches its start)."""
        return max(Cigar.reference_length(self.cigar), 1)


class PositionRecord:
    """
    The closed, immutable state of one reference position.

    Feature bases and the reference base are stored upper-case, the only case the nucleotide codec can return.

    Attributes:
        position (int): Absolute position (plaintext).
        reference_base (bytes): The reference base at this position.
        coverage (int): Number of reads that touched this position.
        features (tuple[PositionFeature, ...]): Features ordered by coverage index then insertion order.
        qualities (np.ndarray): Quality scores of the read bases aligned to this position (read-only ``uint8``).
        read_headers (tuple[ReadHeader, ...]): Headers of the reads starting here, in ingestion order.
    """
    __slots__ = ('_position', '_reference_base', '_coverage', '_features', '_qualities', '_read_headers')

    def __init__(self, position: int, reference_base: bytes, coverage: int = 0,
                 features: Iterable[PositionFeature] = (), qualities: np.ndarray = None,
                 read_headers: Iterable[ReadHeader] = ()):
        self._position = position
        self._reference_base = reference_base.upper()
        self._coverage = coverage
        self._features = tuple(f._replace(bases=f.bases.upper()) if f.bases != f.bases.upper() else f
                               for f in features)
        qualities = np.array(qualities if qualities is not None else (), dtype=np.uint8)
        qualities.flags.writeable = False
        self._qualities = qualities
        self._read_headers = tuple(read_headers)

    @property
    def position(self) -> int: return self._position
    @property
    def reference_base(self) -> bytes: return self._reference_base
    @property
    def coverage(self) -> int: return self._coverage
    @property
    def features(self) -> tuple[PositionFeature, ...]: return self._features
    @property
    def qualities(self) -> np.ndarray: return self._qualities
    @property
    def read_headers(self) -> tuple[ReadHeader, ...]: return self._read_headers
    @property
    def reference_id(self) -> int: return reference_id_of(self._position)
    @property
    def offset(self) -> int: return offset_of(self._position)

    def __repr__(self):
        return (f"PositionRecord({self.reference_id}:{self.offset}, ref={self._reference_base.decode('ascii')}, "
                f"coverage={self._coverage}, features={len(self._features)})")

    def __eq__(self, other):
        if not isinstance(other, PositionRecord): return False
        return (self._position == other._position and
                self._reference_base == other._reference_base and
                self._coverage == other._coverage and
                self._features == other._features and
                self._read_headers == other._read_headers and
                np.array_equal(self._qualities, other._qualities))

    def __hash__(self):
        return hash((self._position, self._reference_base, self._coverage, self._features, self._read_headers))


class PositionRecordBuilder:
    """
    Accumulates features and quality scores for one position while reads touching it are still being ingested.

    A read's features are buffered by the extractor and handed over in one go with ``add_read_features``, which also
    counts the read towards the coverage, so every feature of one read shares a coverage index.
    """
    __slots__ = ('position', 'reference_base', 'coverage', 'features', 'read_headers', '_qualities')

    def __init__(self, position: int, reference_base: bytes):
        self.position = position
        self.reference_base = reference_base
        self.coverage = 0
        self.features: list[PositionFeature] = []
        self.read_headers: list[ReadHeader] = []
        self._qualities: list[np.ndarray] = []

    def __repr__(self): return f"PositionRecordBuilder({self.position}, coverage={self.coverage})"

    def add_read_header(self, header: ReadHeader):
        """Records a read starting at this position."""
        self.read_headers.append(header)

    def add_read_features(self, features: Iterable[PositionFeature]):
        """Appends one read's features and counts the read towards this position's coverage."""
        self.features.extend(features)
        self.coverage += 1

    def add_qualities(self, qualities: np.ndarray):
        """Appends quality scores (a slice of a read's quality array) to this position."""
        if len(qualities): self._qualities.append(qualities)

    def close(self) -> PositionRecord:
        """Freezes the builder into an immutable ``PositionRecord``."""
        qualities = np.concatenate(self._qualities) if self._qualities else np.empty(0, dtype=np.uint8)
        return PositionRecord(self.position, self.reference_base, self.coverage, self.features, qualities,
                              self.read_headers)
