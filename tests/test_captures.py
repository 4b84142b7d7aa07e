import uuid
from datetime import datetime, timedelta, timezone

from app.core.errors import AppError, ErrorKind
from app.core.vision import RECEIPT_PROMPT
from app.pipeline.capture import CaptureRegistry, RawCaptureRequest
from app.schemas.receipt import CaptureState


def _upload(client, receipt_png):
    return client.post(
        "/api/v1/receipts/captures",
        files={"file": ("receipt.png", receipt_png, "image/png")},
    )


def test_end_to_end_capture(client, receipt_png, storage, vision, repository):
    """Upload, process and save a receipt; it shows up first in the list."""
    r = _upload(client, receipt_png)
    assert r.status_code == 201
    capture = r.json()
    assert capture["state"] == "Uploaded"
    assert capture["image_url"].endswith(".png")
    assert len(storage.objects) == 1

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 200
    data = r.json()
    assert data["state"] == "Parsed"
    assert data["candidate"]["location"] == "Corner Store"
    assert vision.calls == [(RECEIPT_PROMPT, capture["image_url"])]
    assert repository.inserts == 0

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 200
    receipt = r.json()["receipt"]
    assert receipt["merchant"] == "Corner Store"
    assert receipt["total_amount"] == 3.0
    assert receipt["date"] == "2024-01-05T00:00:00Z"
    assert receipt["items"] == [{"name": "Milk", "price": "$3.00"}]

    r = client.get("/api/v1/receipts")
    assert r.json()["receipts"][0]["id"] == receipt["id"]

    r = client.get(f"/api/v1/receipts/captures/{capture['id']}")
    assert r.status_code == 404


def test_rejects_non_image(client):
    r = client.post(
        "/api/v1/receipts/captures",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert r.status_code == 400


def test_rejects_corrupt_image(client):
    r = client.post(
        "/api/v1/receipts/captures",
        files={"file": ("receipt.jpg", b"not really a jpeg", "image/jpeg")},
    )
    assert r.status_code == 400


def test_retry_upload_without_reselecting(client, receipt_png, storage, captures):
    storage.failures = 1
    r = _upload(client, receipt_png)
    assert r.status_code == 502
    assert r.json()["kind"] == "UploadFailed"
    (stored,) = list(captures)
    capture_id = stored.id

    r = client.get(f"/api/v1/receipts/captures/{capture_id}")
    assert r.json()["state"] == "Error"
    assert r.json()["error"]["kind"] == "UploadFailed"

    r = client.post(f"/api/v1/receipts/captures/{capture_id}/upload")
    assert r.status_code == 200
    assert r.json()["state"] == "Uploaded"
    assert r.json()["error"] is None


def test_malformed_response_keeps_raw_text(client, receipt_png, vision):
    vision.responses = ['```json\n{"items": [{"name": "Milk"\n```']
    capture = _upload(client, receipt_png).json()

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 422
    body = r.json()
    assert body["kind"] == "MalformedResponse"
    assert body["raw_text"] == '{"items": [{"name": "Milk"'

    r = client.get(f"/api/v1/receipts/captures/{capture['id']}")
    assert r.json()["state"] == "Error"
    assert r.json()["error"]["raw_text"] == '{"items": [{"name": "Milk"'


def test_process_retry_does_not_reupload(client, receipt_png, storage, vision):
    vision.responses = [
        AppError(ErrorKind.PROCESSING_FAILED, "Receipt analysis timed out.", timed_out=True),
        "```json\n{\"total\": 4, \"date\": \"2024-02-02\"}\n```",
    ]
    capture = _upload(client, receipt_png).json()

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 504
    assert r.json()["kind"] == "ProcessingFailed"

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 200
    assert r.json()["candidate"]["items"] == []
    assert len(storage.objects) == 1
    assert len(vision.calls) == 2


def test_save_failure_keeps_parsed_state(client, receipt_png, vision, repository):
    repository.insert_failures = 1
    capture = _upload(client, receipt_png).json()
    client.post(f"/api/v1/receipts/captures/{capture['id']}/process")

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 502
    assert r.json()["kind"] == "SaveFailed"

    r = client.get(f"/api/v1/receipts/captures/{capture['id']}")
    assert r.json()["state"] == "Parsed"
    assert r.json()["error"]["kind"] == "SaveFailed"

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 200
    assert len(vision.calls) == 1
    assert repository.inserts == 2


def test_invalid_date_then_corrected_candidate(client, receipt_png, vision, repository):
    vision.responses = ['{"location": "Cafe", "total": "$4.00", "date": "sometime"}']
    capture = _upload(client, receipt_png).json()
    client.post(f"/api/v1/receipts/captures/{capture['id']}/process")

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 422
    assert r.json()["kind"] == "InvalidDate"
    assert repository.inserts == 0

    r = client.post(
        f"/api/v1/receipts/captures/{capture['id']}/save",
        json={"candidate": {"location": "Cafe", "total": "$4.00", "date": "2024-04-04"}},
    )
    assert r.status_code == 200
    assert r.json()["receipt"]["total_amount"] == 4.0


def test_invalid_amount(client, receipt_png, vision):
    vision.responses = ['{"location": "Cafe", "total": "abc", "date": "2024-04-04"}']
    capture = _upload(client, receipt_png).json()
    client.post(f"/api/v1/receipts/captures/{capture['id']}/process")

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 422
    assert r.json()["kind"] == "InvalidAmount"


def test_save_before_process_conflicts(client, receipt_png):
    capture = _upload(client, receipt_png).json()
    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/save")
    assert r.status_code == 409


def test_process_twice_conflicts(client, receipt_png):
    capture = _upload(client, receipt_png).json()
    client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 409


def test_in_flight_capture_conflicts(client, receipt_png, captures):
    capture = _upload(client, receipt_png).json()
    (stored,) = list(captures)
    stored.state = CaptureState.PROCESSING

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 409


def test_abandon_capture(client, receipt_png, captures):
    capture = _upload(client, receipt_png).json()
    r = client.delete(f"/api/v1/receipts/captures/{capture['id']}")
    assert r.status_code == 200
    assert len(captures) == 0

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 404


def test_unknown_capture(client):
    r = client.get(f"/api/v1/receipts/captures/{uuid.uuid4()}")
    assert r.status_code == 404
    assert r.json()["kind"] == "NotFound"


def test_abandon_while_processing_discards_response(client, receipt_png, vision, repository, captures):
    capture = _upload(client, receipt_png).json()
    (stored,) = list(captures)

    async def complete_after_abandon(prompt, image_url):
        captures.discard(stored.id)
        return '{"location": "Cafe", "total": "4.00", "date": "2024-04-04"}'

    vision.complete = complete_after_abandon

    r = client.post(f"/api/v1/receipts/captures/{capture['id']}/process")
    assert r.status_code == 404
    assert r.json()["kind"] == "NotFound"
    assert stored.abandoned
    assert stored.raw_response is None
    assert stored.candidate is None
    assert len(captures) == 0
    assert repository.inserts == 0


def _request() -> RawCaptureRequest:
    return RawCaptureRequest(image=b"\x89PNG", content_type="image/png", extension="png")


def test_idle_captures_are_evicted_on_create(user_id):
    registry = CaptureRegistry(max_idle_seconds=60)
    stale = registry.create(user_id, _request())
    fresh = registry.create(user_id, _request())
    stale.updated_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    registry.create(user_id, _request())

    assert len(registry) == 2
    assert stale.abandoned
    assert not fresh.abandoned


def test_in_flight_captures_are_not_evicted(user_id):
    registry = CaptureRegistry(max_idle_seconds=60)
    busy = registry.create(user_id, _request())
    busy.state = CaptureState.PROCESSING
    busy.updated_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    assert registry.evict_idle() == 0
    assert not busy.abandoned


def test_get_keeps_capture_alive(user_id):
    registry = CaptureRegistry(max_idle_seconds=60)
    capture = registry.create(user_id, _request())
    capture.updated_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    registry.get(capture.id, user_id)

    assert registry.evict_idle() == 0
