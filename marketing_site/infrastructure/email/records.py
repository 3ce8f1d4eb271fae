"""Bounded in-process log of recent delivery runs."""

from collections import deque
from typing import Deque, List

from ...core.models.email import EmailRecord


DEFAULT_RECORD_LIMIT = 100


class EmailRecordStore:
    """Keeps the most recent ``limit`` Email Records, oldest evicted first.

    Appends happen on the event loop thread with no awaits in between, so
    concurrent delivery runs cannot interleave inside ``append``.
    """

    def __init__(self, limit: int = DEFAULT_RECORD_LIMIT):
        if limit <= 0:
            raise ValueError("record limit must be positive")
        self.limit = limit
        self._records: Deque[EmailRecord] = deque(maxlen=limit)

    def append(self, record: EmailRecord) -> None:
        self._records.append(record)

    def list(self) -> List[EmailRecord]:
        """Records in insertion order, most recent last."""
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
