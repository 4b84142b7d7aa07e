"""
Receipt validator/mapper.

parse_candidate() turns normalized AI text into a StructuredReceiptCandidate;
to_canonical_record() coerces the candidate's total and date into the record
that gets persisted. Both are pure.
"""

import json
import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import ValidationError

from app.core.errors import ErrorKind, ParseError, ReceiptValidationError
from app.schemas.receipt import ReceiptCreate, StructuredReceiptCandidate

# One signed decimal, optionally wrapped in a currency sign and/or an
# upper-case ISO code ("$12.50", "12.50 USD", "-€4", "EUR 4.20").
_AMOUNT = re.compile(
    r"(?P<sign>-)?\s*(?:[A-Z]{3}\s*)?[$€£¥₩₹¢]?\s*"
    r"(?P<number>\d+(?:\.\d+)?)"
    r"\s*[$€£¥₩₹¢]?\s*(?:[A-Z]{3})?"
)
_THOUSANDS = re.compile(r",(?=\d{3}(?:\D|$))")

# Tried in order after ISO-8601. US month-first wins over day-first for
# slash dates; dotted dates are read day-first.
DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)


def parse_candidate(candidate_text: str) -> StructuredReceiptCandidate:
    """Strictly parse normalized AI output; raise ParseError with the raw text."""
    try:
        data = json.loads(candidate_text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(candidate_text, f"AI response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(candidate_text, "AI response is not a JSON object")

    try:
        return StructuredReceiptCandidate.model_validate(data)
    except ValidationError as e:
        raise ParseError(
            candidate_text, f"AI response is missing receipt fields: {e.error_count()} error(s)"
        ) from e


def coerce_amount(value: str | float | int) -> float:
    """Turn "$1,234.50", "12.5 EUR" or 12.5 into a float."""
    if isinstance(value, bool):
        raise ReceiptValidationError(ErrorKind.INVALID_AMOUNT, f"Invalid amount: {value!r}")

    if isinstance(value, (int, float)):
        try:
            amount = float(value)
        except OverflowError:
            amount = math.inf
    else:
        match = _AMOUNT.fullmatch(_THOUSANDS.sub("", str(value).strip()))
        if match is None:
            raise ReceiptValidationError(ErrorKind.INVALID_AMOUNT, f"Invalid amount: {value!r}")
        amount = float(Decimal(match["number"]))
        if match["sign"]:
            amount = -amount

    if not math.isfinite(amount):
        raise ReceiptValidationError(ErrorKind.INVALID_AMOUNT, f"Invalid amount: {value!r}")
    return amount


def parse_receipt_date(value: str) -> datetime:
    """Parse free-form receipt date text into an aware timestamp (UTC if naive)."""
    text = (value or "").strip()
    if not text:
        raise ReceiptValidationError(ErrorKind.INVALID_DATE, "Receipt date is empty")

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        raise ReceiptValidationError(ErrorKind.INVALID_DATE, f"Invalid date: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_canonical_record(candidate: StructuredReceiptCandidate, user_id: UUID) -> ReceiptCreate:
    return ReceiptCreate(
        user_id=user_id,
        merchant=candidate.location,
        date=parse_receipt_date(candidate.date),
        total_amount=coerce_amount(candidate.total),
        items=list(candidate.items),
    )
