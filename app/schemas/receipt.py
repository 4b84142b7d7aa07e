from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ReceiptItem(BaseModel):
    """Single purchased item. Price is kept as received (text, number or missing)."""

    name: str
    price: str | float | None = None


class StructuredReceiptCandidate(BaseModel):
    """Untrusted receipt data parsed straight from the AI response."""

    items: list[ReceiptItem] = Field(default_factory=list)
    location: str = ""
    summary: str = ""
    merchant_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("merchant_code", "merchantCode", "machcat"),
    )
    total: str | float
    date: str

    @field_validator("items", mode="before")
    @classmethod
    def default_items(cls, v):
        return [] if v is None else v

    @field_validator("location", "summary", mode="before")
    @classmethod
    def default_text(cls, v):
        return "" if v is None else v


class ReceiptCreate(BaseModel):
    """Canonical record before the store assigns an id."""

    user_id: UUID
    merchant: str
    date: datetime
    total_amount: float
    items: list[ReceiptItem] = Field(default_factory=list)

    def to_row(self) -> dict:
        return self.model_dump(mode="json")


class ReceiptRecord(ReceiptCreate):
    id: str
    created_at: datetime | None = None

    model_config = ConfigDict(coerce_numbers_to_str=True)


class ReceiptListResponse(BaseModel):
    receipts: list[ReceiptRecord]
    total: int


class ReceiptTotals(BaseModel):
    total_spent: float
    average: float
    count: int


class SpendingPoint(BaseModel):
    date: datetime
    amount: float


class ReceiptStatsResponse(ReceiptTotals):
    series: list[SpendingPoint]
    recent: list[ReceiptRecord]


class CaptureState(str, Enum):
    # No capture is ever in this state; it names a user with no open capture.
    IDLE = "Idle"
    IMAGE_SELECTED = "ImageSelected"
    UPLOADING = "Uploading"
    UPLOADED = "Uploaded"
    PROCESSING = "Processing"
    PARSED = "Parsed"
    SAVING = "Saving"
    SAVED = "Saved"
    ERROR = "Error"


class CaptureErrorInfo(BaseModel):
    kind: str
    detail: str
    raw_text: str | None = None


class CaptureResponse(BaseModel):
    id: UUID
    state: CaptureState
    image_url: str | None = None
    candidate: StructuredReceiptCandidate | None = None
    error: CaptureErrorInfo | None = None


class SaveCaptureRequest(BaseModel):
    """Optional reviewed candidate; the parsed one is used when absent."""

    candidate: StructuredReceiptCandidate | None = None


class CaptureSavedResponse(BaseModel):
    message: str
    receipt: ReceiptRecord
