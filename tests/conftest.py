import pytest

from secram.core.alignment import AlignedRead
from secram.io.reference import MissingReferenceError


class StubReference:
    """In-memory reference provider."""
    def __init__(self, *sequences: bytes):
        self.sequences = list(sequences)
        self.lookups = 0

    def base_at(self, reference_id: int, offset: int) -> bytes:
        self.lookups += 1
        seq = self.sequences[reference_id]
        if not 0 <= offset < len(seq): raise MissingReferenceError(f'{offset} is outside reference {reference_id}')
        return seq[offset:offset + 1]


REFERENCE = b'ACGT' * 100


def matching_read(start: int, length: int, reference_id: int = 0, sequence: bytes = REFERENCE) -> AlignedRead:
    return AlignedRead(reference_id, start, b'%dM' % length, sequence[start:start + length], b'I' * length)


@pytest.fixture
def reference():
    return StubReference(REFERENCE, REFERENCE[:50])


@pytest.fixture
def key():
    return b'\x01' * 32


@pytest.fixture
def salt():
    return bytes(range(16))
