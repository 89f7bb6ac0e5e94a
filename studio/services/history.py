"""In-memory, order-preserving log of completed calls for one feature."""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

RequestT = TypeVar("RequestT")
ResponseT = TypeVar("ResponseT")


@dataclass(frozen=True)
class HistoryEntry(Generic[RequestT, ResponseT]):
    request: RequestT
    response: ResponseT
    model: str
    timestamp: datetime  # assigned at completion, not at issue


class HistoryLog(Generic[RequestT, ResponseT]):
    """Append-only from the manager; remove/clear are user-triggered only.

    Entries are stored in completion order. Display direction is up to the
    caller via ``entries()`` or ``newest_first()``.
    """

    def __init__(self):
        self._entries: list[HistoryEntry[RequestT, ResponseT]] = []

    def append(self, entry: HistoryEntry[RequestT, ResponseT]) -> None:
        self._entries.append(entry)

    def remove(self, index: int) -> HistoryEntry[RequestT, ResponseT]:
        if not 0 <= index < len(self._entries):
            raise IndexError(f"History index {index} out of range (size {len(self._entries)}).")
        return self._entries.pop(index)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> tuple[HistoryEntry[RequestT, ResponseT], ...]:
        return tuple(self._entries)

    def newest_first(self) -> tuple[HistoryEntry[RequestT, ResponseT], ...]:
        return tuple(reversed(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry[RequestT, ResponseT]]:
        return iter(tuple(self._entries))
