"""
Index from encrypted positions to container offsets.
"""
from pathlib import Path
from typing import NamedTuple, Optional, Union, Iterator, Final

import numpy as np

from secram.io import SecramFormatError


# Constants ------------------------------------------------------------------------------------------------------------
INDEX_DTYPE: Final = np.dtype([('position', '<u8'), ('offset', '<u8')])
INDEX_SUFFIX: Final = '.secrai'


# Classes --------------------------------------------------------------------------------------------------------------
class IndexEntry(NamedTuple):
    """The encrypted position of a container's first record and the container's byte offset."""
    position: int
    offset: int


class PositionIndex:
    """
    Sorted ``(encrypted position, byte offset)`` pairs, one per container.

    Because the position cipher preserves order, a predecessor search on encrypted positions finds the container
    holding (or preceding) any position without decrypting anything.

    Examples:
        >>> index = PositionIndex()
        >>> index.add(1000, 64); index.add(5000, 9000)
        >>> index.offset_for(4999), index.offset_for(5000), index.offset_for(10)
        (64, 9000, None)
    """
    __slots__ = ('_entries', '_positions')

    def __init__(self, entries: np.ndarray = None):
        self._entries: list[IndexEntry] = []
        self._positions: Optional[np.ndarray] = None
        if entries is not None:
            for position, offset in np.asarray(entries, dtype=INDEX_DTYPE).tolist(): self.add(position, offset)

    def __len__(self): return len(self._entries)
    def __iter__(self) -> Iterator[IndexEntry]: return iter(self._entries)
    def __getitem__(self, item) -> IndexEntry: return self._entries[item]
    def __repr__(self): return f"PositionIndex({len(self._entries)} entries)"

    def add(self, position: int, offset: int):
        """
        Appends an entry; entries must arrive in strictly ascending position order.

        Raises:
            ValueError: If the position does not follow the previous entry.
        """
        if self._entries and position <= self._entries[-1].position:
            raise ValueError(f'Index positions must be strictly ascending ({position} after '
                             f'{self._entries[-1].position})')
        self._entries.append(IndexEntry(position, offset))
        self._positions = None

    @property
    def first_offset(self) -> Optional[int]:
        """Offset of the first container, or ``None`` for an empty index."""
        return self._entries[0].offset if self._entries else None

    def offset_for(self, position: int) -> Optional[int]:
        """
        Returns the offset of the container whose first position is the greatest one ``<=`` the query.

        Args:
            position: Encrypted position.

        Returns:
            A byte offset, or ``None`` if the position precedes all data.
        """
        if self._positions is None: self._positions = np.array([e.position for e in self._entries], dtype=np.uint64)
        idx = int(np.searchsorted(self._positions, np.uint64(position), side='right')) - 1
        return None if idx < 0 else self._entries[idx].offset

    def to_array(self) -> np.ndarray:
        return np.array([tuple(e) for e in self._entries], dtype=INDEX_DTYPE)

    def save(self, path: Union[str, Path]):
        """Writes the index as a flat little-endian array of ``(u64 position, u64 offset)``."""
        self.to_array().tofile(path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'PositionIndex':
        """
        Reads an index written by ``save``.

        Raises:
            SecramFormatError: If the file is not a whole number of entries or is not sorted.
        """
        if Path(path).stat().st_size % INDEX_DTYPE.itemsize:
            raise SecramFormatError(f'{path} is not a valid SECRAM index')
        try: return cls(np.fromfile(path, dtype=INDEX_DTYPE))
        except ValueError as e: raise SecramFormatError(f'{path} is not sorted: {e}') from e

    @staticmethod
    def path_for(secram_path: Union[str, Path]) -> Path:
        """Returns the index path that accompanies a SECRAM file."""
        return Path(f'{secram_path}{INDEX_SUFFIX}')
