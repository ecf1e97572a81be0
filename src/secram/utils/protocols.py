from typing import Protocol, Optional, runtime_checkable


@runtime_checkable
class ReferenceProvider(Protocol):
    """Protocol for objects that can look up a single reference base (e.g. FastaReference)."""

    def base_at(self, reference_id: int, offset: int) -> bytes: ...


@runtime_checkable
class RecordSink(Protocol):
    """Protocol for the write side of a container store (e.g. ContainerWriter)."""

    def append_record(self, data: bytes) -> Optional[int]: ...

    def close(self) -> None: ...


@runtime_checkable
class RecordSource(Protocol):
    """Protocol for the read side of a container store (e.g. ContainerReader)."""

    def seek(self, offset: int) -> None: ...

    def read_next(self) -> Optional[bytes]: ...
