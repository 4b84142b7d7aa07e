import os
import uuid
from io import BytesIO
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from PIL import Image

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from app.core.deps import (  # noqa: E402
    CurrentUser,
    get_capture_registry,
    get_current_user,
    get_receipt_repository,
    get_receipt_storage,
    get_vision_client,
)
from app.core.errors import AppError, ErrorKind  # noqa: E402
from app.main import app  # noqa: E402
from app.pipeline.capture import CaptureRegistry  # noqa: E402
from app.schemas.receipt import ReceiptCreate, ReceiptRecord  # noqa: E402

TEST_USER_ID = os.environ.get("TEST_USER_ID", "00000000-0000-0000-0000-000000000000")

PUBLIC_BASE = "https://example.supabase.co/storage/v1/object/public/receipts/"

MILK_RESPONSE = (
    '```json\n{"items":[{"name":"Milk","price":"$3.00"}],"location":"Corner Store",'
    '"summary":"Groceries","total":"$3.00","date":"2024-01-05"}\n```'
)


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.failures = 0

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        if self.failures:
            self.failures -= 1
            raise AppError(ErrorKind.UPLOAD_FAILED, "Failed to upload image. Please try again.")
        self.objects[key] = data
        return key

    def public_url(self, path: str) -> str:
        return f"{PUBLIC_BASE}{path}"


class FakeVision:
    def __init__(self):
        self.responses: list[str | AppError] = [MILK_RESPONSE]
        self.calls: list[tuple[str, str]] = []

    async def complete(self, prompt: str, image_url: str) -> str:
        self.calls.append((prompt, image_url))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, AppError):
            raise response
        return response


class FakeRepository:
    def __init__(self):
        self.rows: dict[str, ReceiptRecord] = {}
        self.insert_failures = 0
        self.inserts = 0

    def add(self, record: ReceiptCreate) -> ReceiptRecord:
        saved = ReceiptRecord(id=str(uuid.uuid4()), **record.model_dump())
        self.rows[saved.id] = saved
        return saved

    async def list_for_user(self, user_id: UUID) -> list[ReceiptRecord]:
        rows = [r for r in self.rows.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.date, reverse=True)

    async def insert(self, record: ReceiptCreate) -> ReceiptRecord:
        self.inserts += 1
        if self.insert_failures:
            self.insert_failures -= 1
            raise AppError(ErrorKind.SAVE_FAILED, "Failed to save receipt: connection reset")
        return self.add(record)

    async def delete(self, receipt_id: str, user_id: UUID) -> bool:
        row = self.rows.get(receipt_id)
        if row is None or row.user_id != user_id:
            return False
        del self.rows[receipt_id]
        return True


def _override_get_current_user() -> CurrentUser:
    return CurrentUser(id=UUID(TEST_USER_ID), email="test@example.com", access_token="test-token")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def captures():
    return CaptureRegistry()


@pytest.fixture
def client(storage, vision, repository, captures):
    app.dependency_overrides[get_current_user] = _override_get_current_user
    app.dependency_overrides[get_receipt_storage] = lambda: storage
    app.dependency_overrides[get_vision_client] = lambda: vision
    app.dependency_overrides[get_receipt_repository] = lambda: repository
    app.dependency_overrides[get_capture_registry] = lambda: captures
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_id() -> UUID:
    return UUID(TEST_USER_ID)


@pytest.fixture
def receipt_png() -> bytes:
    buf = BytesIO()
    Image.new("RGB", (8, 8), "white").save(buf, format="PNG")
    return buf.getvalue()
