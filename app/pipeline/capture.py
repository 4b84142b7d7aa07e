"""
Upload -> process -> save orchestration for a single receipt capture.

    Idle -> ImageSelected -> Uploading -> Uploaded -> Processing -> Parsed
         -> Saving -> Saved

Uploading and Processing fall back to Error on failure and can be retried
from there (the image bytes are kept until an upload succeeds, the image URL
is kept until a parse succeeds). A failed save leaves the capture in Parsed
so it can be saved again without another AI call. Nothing is retried
automatically.

Idle is the absence of a capture: no ReceiptCapture is ever in that state.
A capture is created in ImageSelected and leaves the registry once it is
saved, abandoned or evicted as idle, which puts the user back in Idle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from app.core.errors import AppError, CaptureConflict, ErrorKind, ParseError
from app.core.vision import RECEIPT_PROMPT
from app.pipeline.mapper import parse_candidate, to_canonical_record
from app.pipeline.normalizer import normalize
from app.schemas.receipt import (
    CaptureErrorInfo,
    CaptureResponse,
    CaptureState,
    ReceiptRecord,
    StructuredReceiptCandidate,
)

log = logging.getLogger(__name__)

IN_FLIGHT = {CaptureState.UPLOADING, CaptureState.PROCESSING, CaptureState.SAVING}


@dataclass
class RawCaptureRequest:
    image: bytes
    content_type: str
    extension: str
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ReceiptCapture:
    user_id: UUID
    request: RawCaptureRequest | None
    id: UUID = field(default_factory=uuid4)
    state: CaptureState = CaptureState.IMAGE_SELECTED
    image_path: str | None = None
    image_url: str | None = None
    raw_response: str | None = None
    candidate: StructuredReceiptCandidate | None = None
    error: AppError | None = None
    abandoned: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    @property
    def object_key(self) -> str:
        captured_at = self.request.captured_at if self.request else datetime.now(timezone.utc)
        millis = int(captured_at.timestamp() * 1000)
        extension = self.request.extension if self.request else "jpg"
        return f"{self.user_id}/receipt-{millis}.{extension}"

    def to_response(self) -> CaptureResponse:
        error = None
        if self.error is not None:
            error = CaptureErrorInfo(
                kind=self.error.kind.value,
                detail=self.error.message,
                raw_text=self.error.raw_text,
            )
        return CaptureResponse(
            id=self.id,
            state=self.state,
            image_url=self.image_url,
            candidate=self.candidate,
            error=error,
        )


class CaptureRegistry:
    """
    Open captures of this process, keyed by id.

    A capture nobody has touched for `max_idle_seconds` is dropped the next
    time a capture is created, together with any image bytes it still holds.
    Captures in the middle of a step are never dropped.
    """

    def __init__(self, max_idle_seconds: float = 30 * 60):
        self.max_idle = timedelta(seconds=max_idle_seconds)
        self._captures: dict[UUID, ReceiptCapture] = {}

    def __len__(self) -> int:
        return len(self._captures)

    def __iter__(self):
        return iter(list(self._captures.values()))

    def evict_idle(self) -> int:
        cutoff = datetime.now(timezone.utc) - self.max_idle
        idle = [
            c.id
            for c in self._captures.values()
            if c.state not in IN_FLIGHT and c.updated_at < cutoff
        ]
        for capture_id in idle:
            self.discard(capture_id)
        if idle:
            log.info("Evicted %d idle capture(s)", len(idle))
        return len(idle)

    def create(self, user_id: UUID, request: RawCaptureRequest) -> ReceiptCapture:
        self.evict_idle()
        capture = ReceiptCapture(user_id=user_id, request=request)
        self._captures[capture.id] = capture
        return capture

    def get(self, capture_id: UUID, user_id: UUID) -> ReceiptCapture:
        capture = self._captures.get(capture_id)
        if capture is None or capture.user_id != user_id:
            raise AppError(ErrorKind.NOT_FOUND, "Capture not found")
        capture.touch()
        return capture

    def discard(self, capture_id: UUID) -> None:
        capture = self._captures.pop(capture_id, None)
        if capture is not None:
            capture.abandoned = True


class ReceiptPipeline:
    def __init__(self, storage, vision, repository, prompt: str = RECEIPT_PROMPT):
        self.storage = storage
        self.vision = vision
        self.repository = repository
        self.prompt = prompt

    @staticmethod
    def _begin(capture: ReceiptCapture, action: str, allowed: bool, next_state: CaptureState):
        if capture.state in IN_FLIGHT or not allowed:
            raise CaptureConflict(action, capture.state.value)
        capture.state = next_state

    @staticmethod
    def _fail(capture: ReceiptCapture, error: AppError, state: CaptureState = CaptureState.ERROR):
        capture.error = error
        capture.state = state

    @staticmethod
    def _unexpected(e: Exception) -> AppError:
        return AppError(ErrorKind.UNEXPECTED_ERROR, f"An unexpected error occurred: {e!s}")

    async def upload(self, capture: ReceiptCapture) -> ReceiptCapture:
        allowed = capture.request is not None and (
            capture.state is CaptureState.IMAGE_SELECTED
            or (capture.state is CaptureState.ERROR and capture.image_url is None)
        )
        self._begin(capture, "upload", allowed, CaptureState.UPLOADING)

        request = capture.request
        try:
            path = await self.storage.upload(request.image, capture.object_key, request.content_type)
            image_url = self.storage.public_url(path)
        except AppError as e:
            self._fail(capture, e)
            raise
        except Exception as e:
            log.exception("Unexpected upload failure for capture %s", capture.id)
            error = self._unexpected(e)
            self._fail(capture, error)
            raise error from e

        capture.image_path = path
        capture.image_url = image_url
        capture.request = None
        capture.error = None
        capture.state = CaptureState.UPLOADED
        log.info("Capture %s uploaded to %s", capture.id, path)
        return capture

    async def process(self, capture: ReceiptCapture) -> ReceiptCapture:
        allowed = capture.image_url is not None and (
            capture.state is CaptureState.UPLOADED
            or (capture.state is CaptureState.ERROR and capture.candidate is None)
        )
        self._begin(capture, "process", allowed, CaptureState.PROCESSING)

        try:
            raw = await self.vision.complete(self.prompt, capture.image_url)
        except AppError as e:
            self._fail(capture, e)
            raise
        except Exception as e:
            log.exception("Unexpected processing failure for capture %s", capture.id)
            error = self._unexpected(e)
            self._fail(capture, error)
            raise error from e

        if capture.abandoned:
            log.info("Discarding AI response for abandoned capture %s", capture.id)
            raise AppError(ErrorKind.NOT_FOUND, "Capture was abandoned")

        capture.raw_response = raw
        try:
            candidate = parse_candidate(normalize(raw))
        except ParseError as e:
            log.warning("Malformed AI response for capture %s: %r", capture.id, raw)
            self._fail(capture, e)
            raise

        capture.candidate = candidate
        capture.error = None
        capture.state = CaptureState.PARSED
        log.info("Capture %s parsed: %d item(s) from %r", capture.id, len(candidate.items), candidate.location)
        return capture

    async def save(
        self,
        capture: ReceiptCapture,
        candidate: StructuredReceiptCandidate | None = None,
    ) -> ReceiptRecord:
        self._begin(capture, "save", capture.state is CaptureState.PARSED, CaptureState.SAVING)

        if candidate is not None:
            capture.candidate = candidate

        try:
            record = to_canonical_record(capture.candidate, capture.user_id)
            saved = await self.repository.insert(record)
        except AppError as e:
            self._fail(capture, e, CaptureState.PARSED)
            raise
        except Exception as e:
            log.exception("Unexpected save failure for capture %s", capture.id)
            error = self._unexpected(e)
            self._fail(capture, error, CaptureState.PARSED)
            raise error from e

        capture.error = None
        capture.state = CaptureState.SAVED
        log.info("Capture %s saved as receipt %s", capture.id, saved.id)
        return saved
