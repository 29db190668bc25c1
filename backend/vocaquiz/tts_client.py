from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .settings import settings

logger = logging.getLogger(__name__)


class SynthesisError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ElevenLabsClient:
    """Text-to-speech over the ElevenLabs REST API; returns MP3 bytes."""

    content_type = "audio/mpeg"
    extension = "mp3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key or settings.elevenlabs_api_key
        if not self.api_key:
            raise ValueError("ELEVENLABS_API_KEY is not configured")
        self.voice_id = voice_id or settings.elevenlabs_voice_id
        self.model_id = model_id or settings.elevenlabs_model_id
        self.base_url = (base_url or settings.elevenlabs_base_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.elevenlabs_timeout_seconds)

    async def synthesize(self, text: str) -> bytes:
        url = f"{self.base_url}/text-to-speech/{self.voice_id}"
        headers = {"xi-api-key": self.api_key, "Content-Type": "application/json", "Accept": self.content_type}
        body: Dict[str, Any] = {"text": text, "model_id": self.model_id}
        try:
            r = await self._client.post(url, json=body, headers=headers, params={"output_format": "mp3_44100_128"})
        except httpx.RequestError as exc:
            raise SynthesisError(f"speech synthesis request failed: {exc}") from exc
        if r.status_code >= 300:
            raise SynthesisError(f"speech synthesis returned {r.status_code}", status_code=r.status_code)
        if not r.content:
            raise SynthesisError("speech synthesis returned an empty body", status_code=r.status_code)
        return r.content

    async def aclose(self) -> None:
        await self._client.aclose()
