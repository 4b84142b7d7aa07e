import asyncio
import logging

from supabase import Client

from app.core.errors import AppError, ErrorKind

log = logging.getLogger(__name__)


class ReceiptStorage:
    """Receipt images in a Supabase storage bucket."""

    def __init__(self, supabase: Client, bucket: str):
        self._supabase = supabase
        self._bucket = bucket

    def _upload(self, data: bytes, key: str, content_type: str) -> str:
        response = self._supabase.storage.from_(self._bucket).upload(
            path=key,
            file=data,
            file_options={"content-type": content_type},
        )
        return response.path

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Upload the image bytes and return the stored object path."""
        try:
            return await asyncio.to_thread(self._upload, data, key, content_type)
        except Exception as e:
            log.error("Upload of %s to bucket %s failed: %s", key, self._bucket, e)
            raise AppError(
                ErrorKind.UPLOAD_FAILED, "Failed to upload image. Please try again."
            ) from e

    def public_url(self, path: str) -> str:
        return self._supabase.storage.from_(self._bucket).get_public_url(path)
