from __future__ import annotations

import logging
from typing import Optional, Protocol

import edge_tts
import httpx


class SpeechSynthesizer(Protocol):
    def enabled(self) -> bool: ...  # pragma: no cover

    async def synthesize(self, text: str, voice: str) -> bytes: ...  # pragma: no cover


class EdgeTTSClient:
    """Microsoft Edge neural voices; voice ids look like ``zh-CN-XiaoxiaoNeural``."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return True

    async def synthesize(self, text: str, voice: str) -> bytes:
        communicate = edge_tts.Communicate(text, voice)
        audio = bytearray()
        async for chunk in communicate.stream():
            if chunk.get("type") == "audio":
                audio.extend(chunk["data"])
        if not audio:
            raise RuntimeError(f"edge-tts returned no audio for voice {voice}")
        self.log.info(
            "edge-tts synthesis completed",
            extra={"voice": voice, "content_length": len(audio)},
        )
        return bytes(audio)


class ElevenLabsClient:
    """ElevenLabs text-to-speech; the scene voice is an ElevenLabs voice id."""

    def __init__(
        self,
        api_key: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        output_format: str = "mp3_44100_128",
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self.model_id = model_id
        self.output_format = output_format
        self.log = logger or logging.getLogger(__name__)
        self._client_options = {
            "base_url": base_url.rstrip("/"),
            "timeout": timeout,
            "transport": transport,
        }

    def enabled(self) -> bool:
        return bool(self._api_key)

    async def synthesize(self, text: str, voice: str) -> bytes:
        if not self.enabled():
            raise RuntimeError("ElevenLabs api key is not set")
        async with httpx.AsyncClient(headers={"xi-api-key": self._api_key}, **self._client_options) as client:
            response = await client.post(
                f"/v1/text-to-speech/{voice}",
                params={"output_format": self.output_format},
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
                },
            )
            response.raise_for_status()
        self.log.info(
            "elevenlabs synthesis completed",
            extra={"voice_id": voice, "model_id": self.model_id, "content_length": len(response.content)},
        )
        return response.content
