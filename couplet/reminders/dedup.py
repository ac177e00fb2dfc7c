"""
In-memory record of occurrences already scheduled by this process.

Entries are never persisted; a restarted client rebuilds the ledger from
storage on its first tick and local notification identifiers absorb the
rest.
"""
from datetime import datetime
from typing import Set, Union

from couplet.utils.timezone import isoformat_utc


def ledger_key(reminder_id: str, due_date: Union[datetime, str]) -> str:
    """reminderId + "_" + UTC ISO due date, so equal instants in different zones collide."""
    due = due_date if isinstance(due_date, str) else isoformat_utc(due_date)
    return f"{reminder_id}_{due}"


class DedupLedger:
    def __init__(self):
        self._keys: Set[str] = set()

    def should_skip(self, reminder_id: str, due_date: Union[datetime, str]) -> bool:
        return ledger_key(reminder_id, due_date) in self._keys

    def mark_scheduled(self, reminder_id: str, due_date: Union[datetime, str]) -> None:
        self._keys.add(ledger_key(reminder_id, due_date))

    def clear(self) -> None:
        self._keys.clear()

    def __len__(self) -> int:
        return len(self._keys)
