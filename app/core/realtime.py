import logging
from collections.abc import Callable
from uuid import UUID

from supabase import AsyncClient

from app.pipeline.feed import ChangeType, ReceiptChange

log = logging.getLogger(__name__)


def change_from_payload(payload: dict) -> ReceiptChange | None:
    """Build a ReceiptChange from a realtime postgres_changes payload."""
    data = payload.get("data", payload)
    event = data.get("type") or data.get("eventType")
    try:
        change_type = ChangeType(str(event).upper())
    except ValueError:
        log.warning("Ignoring realtime event of unknown type %r", event)
        return None

    return ReceiptChange(
        type=change_type,
        record=data.get("record") or data.get("new") or None,
        old_record=data.get("old_record") or data.get("old") or None,
    )


async def subscribe_receipt_changes(
    client: AsyncClient,
    table: str,
    user_id: UUID,
    on_change: Callable[[ReceiptChange], None],
):
    """Subscribe to insert/update/delete events for one user's receipts.

    Returns the channel; pass it to client.remove_channel() to unsubscribe.
    """

    def _handle(payload: dict) -> None:
        change = change_from_payload(payload)
        if change is not None:
            on_change(change)

    channel = client.channel(f"{table}:{user_id}")
    channel.on_postgres_changes(
        "*",
        schema="public",
        table=table,
        filter=f"user_id=eq.{user_id}",
        callback=_handle,
    )
    await channel.subscribe()
    log.info("Subscribed to %s changes for user %s", table, user_id)
    return channel
