"""
AI vision boundary: sends a receipt image URL plus an instruction prompt to an
OpenAI-compatible chat completion endpoint and assembles the streamed answer.
"""

import asyncio
import logging

from openai import AsyncOpenAI, OpenAIError

from app.core.config import Settings
from app.core.errors import AppError, ErrorKind

log = logging.getLogger(__name__)

RECEIPT_PROMPT = """Please analyze this receipt and provide the following information in JSON format:
1. A list of items purchased with their prices
2. The location where the purchase was made (merchant name)
3. A short summary about the receipt
4. If there's a MERCHANT code, please include it
5. Calculate and include the total for all the purchased items
6. The date of the purchase

Format the response as a JSON object with keys: items (an array of objects with name and price), \
location, summary, machcat (if present), total, and date."""


class VisionClient:
    def __init__(self, client: AsyncOpenAI, model: str, timeout: float):
        self._client = client
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "VisionClient":
        client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.VISION_TIMEOUT_SECONDS,
            max_retries=0,
        )
        return cls(client, settings.VISION_MODEL, settings.VISION_TIMEOUT_SECONDS)

    async def _stream(self, prompt: str, image_url: str) -> str:
        stream = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            stream=True,
        )
        parts: list[str] = []
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                parts.append(chunk.choices[0].delta.content)
        return "".join(parts)

    async def complete(self, prompt: str, image_url: str) -> str:
        """Return the full completion text for the image, bounded by the timeout."""
        try:
            return await asyncio.wait_for(self._stream(prompt, image_url), self._timeout)
        except asyncio.TimeoutError as e:
            log.error("Vision completion for %s timed out after %ss", image_url, self._timeout)
            raise AppError(
                ErrorKind.PROCESSING_FAILED,
                "Receipt analysis timed out. Please try again.",
                timed_out=True,
            ) from e
        except OpenAIError as e:
            log.error("Vision completion for %s failed: %s", image_url, e)
            raise AppError(
                ErrorKind.PROCESSING_FAILED, "Failed to process receipt. Please try again."
            ) from e

    async def close(self) -> None:
        await self._client.close()
