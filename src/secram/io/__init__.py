"""
Module for reading inputs (SAM, FASTA), writing SAM, and reading/writing SECRAM files.
"""
from abc import ABC, abstractmethod
from collections.abc import Iterator
from gzip import GzipFile
from pathlib import Path
from typing import Union, Generator, BinaryIO

from secram import SecramError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class SecramIOError(SecramError, IOError):
    """Base class for I/O errors raised by this package."""


class SecramFormatError(SecramIOError):
    """Raised when a file is not in the expected format or is truncated."""


# Functions ------------------------------------------------------------------------------------------------------------
def open_binary(file: Union[str, Path, BinaryIO]) -> tuple[BinaryIO, bool]:
    """
    Opens a path for binary reading, transparently decompressing gzip files.

    :param file: Path or an already open binary handle.
    :return: The handle and whether the caller owns it (and must close it).
    """
    if not isinstance(file, (str, Path)): return file, False
    handle = open(file, 'rb')
    if handle.peek(2)[:2] == b'\x1f\x8b': return GzipFile(fileobj=handle, mode='rb'), True
    return handle, True


# Classes --------------------------------------------------------------------------------------------------------------
class BaseReader(ABC):
    """Abstract base class for line-oriented input readers."""
    __slots__ = ('_handle', '_owns_handle', '_iterator')

    def __init__(self, file: Union[str, Path, BinaryIO]):
        """
        Initializes the reader.

        Args:
            file: Path to read from, or an open binary handle (which the reader will not close).
        """
        self._handle, self._owns_handle = open_binary(file)
        self._iterator = None

    @abstractmethod
    def __iter__(self) -> Generator: ...
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()
    def __next__(self):
        if self._iterator is None:
            self._iterator = self.__iter__()
        return next(self._iterator)

    def close(self):
        """Closes the underlying handle if the reader opened it."""
        if self._owns_handle: self._handle.close()


class BaseWriter(ABC):
    """
    Abstract base class for line-oriented output writers.

    The header is written on entering the context; the handle is closed on exit if the writer opened it.

    Examples:
        >>> with SamWriter("output.sam", references) as w:
        ...     w.write(read1, read2)
    """
    __slots__ = ('_file', '_handle', '_owns_handle')

    def __init__(self, file: Union[str, Path, BinaryIO]):
        """
        Initializes the writer.

        Args:
            file: Path to write to, or an open binary handle (which the writer will not close).
        """
        self._file = file
        self._handle = None
        self._owns_handle = isinstance(file, (str, Path))

    def __enter__(self):
        """Opens the file and writes the header."""
        self._handle = open(self._file, 'wb') if self._owns_handle else self._file
        self.write_header()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Closes the file."""
        if self._owns_handle: self._handle.close()

    def write(self, *items):
        """
        Writes multiple items, unpacking lists, tuples and generators.

        Args:
            *items: Items (or iterables of items) to write.
        """
        for item in items:
            if isinstance(item, (list, tuple, Iterator)):
                for sub_item in item: self.write_one(sub_item)
            else:
                self.write_one(item)

    @abstractmethod
    def write_one(self, item):
        """Writes a single item."""

    def write_header(self):
        """Writes the file header if applicable."""
        pass
