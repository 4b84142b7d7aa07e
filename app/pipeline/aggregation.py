import csv
import io
from collections.abc import Sequence
from datetime import datetime, tzinfo

from app.core.errors import ReceiptValidationError
from app.pipeline.mapper import coerce_amount
from app.schemas.receipt import ReceiptRecord, ReceiptTotals, SpendingPoint

CSV_HEADER = ["Date", "Merchant", "Item", "Price", "Total Amount"]
CSV_FILENAME = "receipts_export.csv"


def compute_totals(records: Sequence[ReceiptRecord]) -> ReceiptTotals:
    """Sum and average of total_amount. An empty list averages to 0, not NaN."""
    count = len(records)
    total_spent = sum((r.total_amount for r in records), 0.0)
    return ReceiptTotals(
        total_spent=total_spent,
        average=total_spent / (count or 1),
        count=count,
    )


def spending_series(records: Sequence[ReceiptRecord], limit: int = 10) -> list[SpendingPoint]:
    """Amounts of the first `limit` records, in list order (newest first)."""
    return [SpendingPoint(date=r.date, amount=r.total_amount) for r in records[:limit]]


def _local_date(value: datetime, tz: tzinfo | None) -> str:
    local = value.astimezone(tz) if tz is not None else value
    return f"{local.month}/{local.day}/{local.year}"


def _format_price(price: str | float | None) -> str:
    if price is None:
        return ""
    try:
        return f"{coerce_amount(price):.2f}"
    except ReceiptValidationError:
        return str(price)


def to_csv(records: Sequence[ReceiptRecord], tz: tzinfo | None = None) -> str:
    """
    One row per item; the first item row of a receipt also carries its total.
    Receipts without items get a single "No items" row so every receipt shows up.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)

    for record in records:
        date = _local_date(record.date, tz)
        total = f"{record.total_amount:.2f}"

        if not record.items:
            writer.writerow([date, record.merchant, "No items", "0.00", total])
            continue

        for index, item in enumerate(record.items):
            writer.writerow(
                [
                    date,
                    record.merchant,
                    item.name,
                    _format_price(item.price),
                    total if index == 0 else "",
                ]
            )

    return buf.getvalue()
