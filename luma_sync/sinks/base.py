"""Abstract sink interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence


class TabularSink(ABC):
    """
    A spreadsheet-like destination addressed by name and 1-based row.

    Row order is preserved. Implementations perform a single attempt per
    call and raise the client error types; retry is the writer's concern.
    """

    @abstractmethod
    async def ensure(self, destination: str, headers: Sequence[str]) -> None:
        """Create the destination (with headers) if it does not exist."""
        ...

    @abstractmethod
    async def clear(self, destination: str) -> None:
        """Remove all content from the destination."""
        ...

    @abstractmethod
    async def write_header(self, destination: str, headers: Sequence[str]) -> None:
        """Write the header row at row 1."""
        ...

    @abstractmethod
    async def write_rows(
        self,
        destination: str,
        start_row: int,
        values: Sequence[Sequence[Any]],
    ) -> None:
        """Write rows starting at ``start_row`` (1-based)."""
        ...

    @abstractmethod
    async def row_count(self, destination: str) -> int:
        """Number of rows currently holding data, header included."""
        ...

    @abstractmethod
    async def resize(self, destination: str, min_rows: int, min_cols: int) -> None:
        """Grow the destination grid to at least the given size. Never shrinks."""
        ...


class RelationalSink(ABC):
    """A database-like destination with idempotent upserts."""

    @abstractmethod
    async def upsert(
        self,
        table: str,
        records: Sequence[dict[str, Any]],
        conflict_key: str,
    ) -> None:
        ...
