"""OpenAI-compatible chat-completions client over aiohttp."""
from __future__ import annotations

import asyncio
from typing import Optional, Protocol, Sequence

import aiohttp

from lots_ingest.config import CLASSIFIER_SETTINGS
from lots_ingest.utils import get_logger

from .errors import ClassificationError, ClassifierResponseError, PaymentRequiredError, RateLimitedError

logger = get_logger(__name__)


class ChatClient(Protocol):
    model: str

    async def complete(self, messages: Sequence[dict[str, str]]) -> str: ...


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header; HTTP-date form is ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class ChatCompletionClient:
    """Posts one JSON-mode completion request per call.

    Status mapping: 402 -> PaymentRequiredError, 429 -> RateLimitedError
    (with the provider's Retry-After when sent), other non-2xx, timeouts and
    transport errors -> ClassificationError, a 200 without message content ->
    ClassifierResponseError.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.api_url = str(api_url or CLASSIFIER_SETTINGS["api_url"])
        self.api_key = str(api_key if api_key is not None else CLASSIFIER_SETTINGS["api_key"])
        self.model = str(model or CLASSIFIER_SETTINGS["model"])
        self.temperature = float(temperature if temperature is not None else CLASSIFIER_SETTINGS["temperature"])
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or CLASSIFIER_SETTINGS["timeout_seconds"]))

    async def complete(self, messages: Sequence[dict[str, str]]) -> str:
        payload = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(self.api_url, json=payload, headers=headers) as response:
                    if response.status == 402:
                        raise PaymentRequiredError()
                    if response.status == 429:
                        raise RateLimitedError(retry_after=parse_retry_after(response.headers.get("Retry-After")))
                    if response.status >= 400:
                        body = await response.text()
                        logger.error("Classifier API error", status_code=response.status, body=body[:500])
                        raise ClassificationError(f"Classifier API returned HTTP {response.status}", status=response.status)
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logger.error("Classifier API timeout", timeout_seconds=self._timeout.total)
            raise ClassificationError("Classifier API request timed out") from None
        except aiohttp.ClientError as e:
            logger.error("Classifier API client error", error=str(e))
            raise ClassificationError(f"Classifier API client error: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            logger.warning("Classifier API returned empty content")
            raise ClassifierResponseError("Classifier API returned empty content")
        return content


__all__ = ["ChatClient", "ChatCompletionClient", "parse_retry_after"]
