"""
In-memory record list kept current by change-feed events.

Events are applied by id: inserts and updates upsert, deletes remove. A
delete for an id that is not (or no longer) in the list is a no-op, so
replayed or out-of-order events never fail.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from pydantic import ValidationError

from app.schemas.receipt import ReceiptRecord

log = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ReceiptChange:
    type: ChangeType
    record: dict | None = None
    old_record: dict | None = None

    @property
    def receipt_id(self) -> str | None:
        row = self.old_record if self.type is ChangeType.DELETE else self.record
        if not row or row.get("id") is None:
            return None
        return str(row["id"])


class ReceiptFeed:
    def __init__(self, user_id: UUID, records: Iterable[ReceiptRecord] = ()):
        self.user_id = user_id
        self._records: dict[str, ReceiptRecord] = {r.id: r for r in records}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, receipt_id: str) -> bool:
        return receipt_id in self._records

    @property
    def records(self) -> list[ReceiptRecord]:
        """Most recent first, matching the list endpoint's ordering."""
        return sorted(self._records.values(), key=lambda r: r.date, reverse=True)

    def apply(self, change: ReceiptChange) -> bool:
        """Apply one event; returns True if the list changed."""
        receipt_id = change.receipt_id
        if receipt_id is None:
            log.warning("Ignoring %s change without an id", change.type.value)
            return False

        if change.type is ChangeType.DELETE:
            return self._records.pop(receipt_id, None) is not None

        try:
            record = ReceiptRecord.model_validate(change.record)
        except ValidationError:
            log.warning("Ignoring unreadable %s change for receipt %s", change.type.value, receipt_id)
            return False

        if record.user_id != self.user_id:
            return False

        if self._records.get(receipt_id) == record:
            return False
        self._records[receipt_id] = record
        return True
