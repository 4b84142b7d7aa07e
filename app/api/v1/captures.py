"""
Receipt capture API: upload a receipt photo, have it read by the AI vision
service, review the parsed result and save it.

Each step is an explicit request; a failed step is retried by calling the
same endpoint again and never repeats an earlier successful step.
"""

import logging
from io import BytesIO
from uuid import UUID

from fastapi import APIRouter, File, HTTPException, UploadFile, status
from PIL import Image, UnidentifiedImageError

from app.core.config import settings
from app.core.deps import AuthenticatedUser, Captures, Pipeline
from app.pipeline.capture import RawCaptureRequest
from app.schemas.receipt import CaptureResponse, CaptureSavedResponse, SaveCaptureRequest

log = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts/captures", tags=["captures"])

_EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif", "HEIF": "heic"}


def _read_image(contents: bytes) -> tuple[str, str]:
    """Return (content_type, extension) for image bytes, or raise 400."""
    try:
        image = Image.open(BytesIO(contents))
        image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid image: {e!s}",
        ) from e

    image_format = (image.format or "JPEG").upper()
    content_type = Image.MIME.get(image_format, "image/jpeg")
    return content_type, _EXTENSIONS.get(image_format, "jpg")


@router.post("", response_model=CaptureResponse, status_code=status.HTTP_201_CREATED)
async def create_capture(
    user: AuthenticatedUser,
    captures: Captures,
    pipeline: Pipeline,
    file: UploadFile = File(..., description="Receipt image file"),
):
    """
    Select a receipt image and upload it to the object store.

    On upload failure the capture is kept in Error with the image, and can be
    retried with POST /receipts/captures/{id}/upload.
    """
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be an image (e.g. image/jpeg, image/png)",
        )

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(contents) > settings.MAX_IMAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image larger than {settings.MAX_IMAGE_BYTES} bytes",
        )

    content_type, extension = _read_image(contents)
    capture = captures.create(
        user.id,
        RawCaptureRequest(image=contents, content_type=content_type, extension=extension),
    )
    await pipeline.upload(capture)
    return capture.to_response()


@router.get("/{capture_id}", response_model=CaptureResponse)
async def get_capture(capture_id: UUID, user: AuthenticatedUser, captures: Captures):
    return captures.get(capture_id, user.id).to_response()


@router.post("/{capture_id}/upload", response_model=CaptureResponse)
async def retry_upload(
    capture_id: UUID, user: AuthenticatedUser, captures: Captures, pipeline: Pipeline
):
    """Retry a failed upload with the image already selected."""
    capture = captures.get(capture_id, user.id)
    await pipeline.upload(capture)
    return capture.to_response()


@router.post("/{capture_id}/process", response_model=CaptureResponse)
async def process_capture(
    capture_id: UUID, user: AuthenticatedUser, captures: Captures, pipeline: Pipeline
):
    """Run AI analysis on the uploaded image and return the parsed receipt for review."""
    capture = captures.get(capture_id, user.id)
    await pipeline.process(capture)
    return capture.to_response()


@router.post("/{capture_id}/save", response_model=CaptureSavedResponse)
async def save_capture(
    capture_id: UUID,
    user: AuthenticatedUser,
    captures: Captures,
    pipeline: Pipeline,
    body: SaveCaptureRequest | None = None,
):
    """Save the reviewed receipt. A failed save keeps the parsed result for retry."""
    capture = captures.get(capture_id, user.id)
    receipt = await pipeline.save(capture, body.candidate if body else None)
    captures.discard(capture.id)
    return CaptureSavedResponse(message="Receipt saved successfully!", receipt=receipt)


@router.delete("/{capture_id}", status_code=status.HTTP_200_OK)
async def abandon_capture(capture_id: UUID, user: AuthenticatedUser, captures: Captures):
    """Drop a capture. A pending AI response for it is discarded when it arrives."""
    capture = captures.get(capture_id, user.id)
    captures.discard(capture.id)
    log.info("Capture %s abandoned in state %s", capture.id, capture.state.value)
    return {"message": "Capture discarded"}
