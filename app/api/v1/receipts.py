import asyncio
import logging
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from supabase import AsyncClient

from app.core.config import settings
from app.core.deps import AuthenticatedUser, Repository, get_async_supabase
from app.core.errors import AppError, ErrorKind
from app.core.realtime import subscribe_receipt_changes
from app.core.repository import ReceiptRepository
from app.pipeline.aggregation import CSV_FILENAME, compute_totals, spending_series, to_csv
from app.pipeline.feed import ReceiptChange, ReceiptFeed
from app.schemas.receipt import ReceiptListResponse, ReceiptStatsResponse

log = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.get("", response_model=ReceiptListResponse)
async def list_receipts(user: AuthenticatedUser, repository: Repository):
    """Get the user's receipts, most recent first."""
    receipts = await repository.list_for_user(user.id)
    return ReceiptListResponse(receipts=receipts, total=len(receipts))


@router.get("/stats", response_model=ReceiptStatsResponse)
async def get_receipt_stats(
    user: AuthenticatedUser,
    repository: Repository,
    series_limit: int = Query(10, ge=1, le=100),
    recent_limit: int = Query(5, ge=0, le=100),
):
    """Total spent, average per receipt, receipt count and latest spending."""
    receipts = await repository.list_for_user(user.id)
    totals = compute_totals(receipts)
    return ReceiptStatsResponse(
        **totals.model_dump(),
        series=spending_series(receipts, series_limit),
        recent=receipts[:recent_limit],
    )


@router.get("/export")
async def export_receipts(
    user: AuthenticatedUser,
    repository: Repository,
    tz: str | None = Query(None, description="IANA timezone used for the Date column"),
):
    """Download all receipts as CSV (one row per item)."""
    try:
        zone = ZoneInfo(tz or settings.EXPORT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown timezone: {tz}"
        )

    receipts = await repository.list_for_user(user.id)
    return Response(
        content=to_csv(receipts, zone),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{CSV_FILENAME}"'},
    )


@router.delete("/{receipt_id}", status_code=status.HTTP_200_OK)
async def delete_receipt(receipt_id: str, user: AuthenticatedUser, repository: Repository):
    """Delete one of the user's receipts. Immediate and permanent."""
    if not await repository.delete(receipt_id, user.id):
        raise AppError(ErrorKind.NOT_FOUND, "Receipt not found")

    log.info("Receipt %s deleted by user %s", receipt_id, user.id)
    return {"message": "Receipt deleted successfully"}


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/live")
async def receipts_live(
    websocket: WebSocket,
    token: str = Query(...),
    realtime: AsyncClient = Depends(get_async_supabase),
):
    """Push the user's receipt list whenever the change feed reports a change."""
    supabase = websocket.app.state.supabase
    try:
        user_response = supabase.auth.get_user(token)
        user_id = UUID(user_response.user.id)
    except Exception:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    repository = ReceiptRepository(supabase, settings.RECEIPTS_TABLE)
    try:
        feed = ReceiptFeed(user_id, await repository.list_for_user(user_id))
    except AppError:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.send_json(
        {"type": "snapshot", "receipts": [r.model_dump(mode="json") for r in feed.records]}
    )

    changes: asyncio.Queue[ReceiptChange] = asyncio.Queue()
    channel = await subscribe_receipt_changes(
        realtime, settings.RECEIPTS_TABLE, user_id, changes.put_nowait
    )
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_change = asyncio.create_task(changes.get())
            done, _ = await asyncio.wait(
                {next_change, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnected in done:
                next_change.cancel()
                break

            change = next_change.result()
            if feed.apply(change):
                await websocket.send_json(
                    {
                        "type": change.type.value,
                        "receipt_id": change.receipt_id,
                        "receipts": [r.model_dump(mode="json") for r in feed.records],
                    }
                )
    finally:
        disconnected.cancel()
        await realtime.remove_channel(channel)
        log.info("Live receipt feed closed for user %s", user_id)
