import asyncio
import logging
from uuid import UUID

from supabase import Client

from app.core.errors import AppError, ErrorKind
from app.schemas.receipt import ReceiptCreate, ReceiptRecord

log = logging.getLogger(__name__)


class ReceiptRepository:
    """Canonical receipt rows, always scoped to the owning user."""

    def __init__(self, supabase: Client, table: str):
        self._supabase = supabase
        self._table = table

    def _list(self, user_id: UUID) -> list[dict]:
        result = (
            self._supabase.table(self._table)
            .select("*")
            .eq("user_id", str(user_id))
            .order("date", desc=True)
            .execute()
        )
        return result.data or []

    def _insert(self, row: dict) -> list[dict]:
        result = self._supabase.table(self._table).insert(row).execute()
        return result.data or []

    def _delete(self, receipt_id: str, user_id: UUID) -> list[dict]:
        result = (
            self._supabase.table(self._table)
            .delete()
            .eq("id", receipt_id)
            .eq("user_id", str(user_id))
            .execute()
        )
        return result.data or []

    async def list_for_user(self, user_id: UUID) -> list[ReceiptRecord]:
        try:
            rows = await asyncio.to_thread(self._list, user_id)
        except Exception as e:
            log.exception("Fetching receipts for user %s failed", user_id)
            raise AppError(ErrorKind.UNEXPECTED_ERROR, f"Failed to fetch receipts: {e!s}") from e
        return [ReceiptRecord(**row) for row in rows]

    async def insert(self, record: ReceiptCreate) -> ReceiptRecord:
        try:
            rows = await asyncio.to_thread(self._insert, record.to_row())
        except Exception as e:
            log.exception("Saving receipt for user %s failed", record.user_id)
            raise AppError(ErrorKind.SAVE_FAILED, f"Failed to save receipt: {e!s}") from e

        if not rows:
            raise AppError(ErrorKind.SAVE_FAILED, "Failed to save receipt: no row returned")
        return ReceiptRecord(**rows[0])

    async def delete(self, receipt_id: str, user_id: UUID) -> bool:
        try:
            rows = await asyncio.to_thread(self._delete, receipt_id, user_id)
        except Exception as e:
            log.exception("Deleting receipt %s for user %s failed", receipt_id, user_id)
            raise AppError(ErrorKind.UNEXPECTED_ERROR, f"Failed to delete receipt: {e!s}") from e
        return bool(rows)
