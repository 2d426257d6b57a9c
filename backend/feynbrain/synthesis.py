"""Text-to-speech backends producing single-use audio handles."""

from __future__ import annotations

import base64
import logging
import time
from typing import List, Optional, Protocol

import httpx

from .errors import ServiceError
from .settings import settings

logger = logging.getLogger(__name__)


class AudioHandle:
	"""Synthesized audio that may be played once and must be released afterwards."""

	def __init__(self, audio: bytes, mime_type: str = "audio/mpeg", text: str = "") -> None:
		self._audio: Optional[bytes] = audio
		self.mime_type = mime_type
		self.text = text
		self.played = False

	@property
	def released(self) -> bool:
		return self._audio is None

	def consume(self) -> bytes:
		if self._audio is None:
			raise RuntimeError("Audio handle already released")
		if self.played:
			raise RuntimeError("Audio handle already played")
		self.played = True
		return self._audio

	def as_base64(self) -> str:
		return base64.b64encode(self.consume()).decode("ascii")

	def release(self) -> None:
		self._audio = None


class SpeechSynthesizer(Protocol):
	async def synthesize(self, text: str) -> AudioHandle:
		...


class ElevenLabsSynthesizer:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		voice_id: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.elevenlabs_api_key
		if not self.api_key:
			raise ValueError("ELEVENLABS_API_KEY is not configured")
		self.voice_id = voice_id or settings.elevenlabs_voice_id
		self.base_url = settings.elevenlabs_base_url.rstrip("/")
		self._transport = transport

	async def synthesize(self, text: str) -> AudioHandle:
		payload = {
			"text": text,
			"model_id": settings.elevenlabs_model,
			"voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
		}
		headers = {
			"Accept": "audio/mpeg",
			"Content-Type": "application/json",
			"xi-api-key": self.api_key,
		}
		try:
			async with httpx.AsyncClient(timeout=settings.llm_timeout_seconds, transport=self._transport) as client:
				r = await client.post(f"{self.base_url}/text-to-speech/{self.voice_id}", headers=headers, json=payload)
		except httpx.HTTPError as e:
			logger.error("ElevenLabs request failed: %s", e)
			raise ServiceError("Text-to-speech request failed", service="synthesis") from e
		if r.status_code >= 400:
			try:
				body = r.json()
			except ValueError:
				body = None
			detail = body.get("detail") if isinstance(body, dict) else None
			if isinstance(detail, dict):
				detail = detail.get("message")
			detail = detail or "Unknown error"
			raise ServiceError(f"ElevenLabs API error: {r.status_code} - {detail}", service="synthesis")
		if not r.content:
			raise ServiceError("ElevenLabs returned no audio", service="synthesis")
		return AudioHandle(r.content, r.headers.get("content-type", "audio/mpeg"), text)


class MockSynthesizer:
	def __init__(self, error: Optional[str] = None) -> None:
		self.error = error
		self.handles: List[AudioHandle] = []

	async def synthesize(self, text: str) -> AudioHandle:
		if self.error:
			raise ServiceError(self.error, service="synthesis")
		handle = AudioHandle(f"mock-audio-{int(time.time() * 1000)}".encode(), "audio/mpeg", text)
		self.handles.append(handle)
		return handle


def get_synthesizer() -> SpeechSynthesizer:
	if settings.mock_mode or not settings.elevenlabs_api_key:
		if not settings.mock_mode:
			logger.warning("ELEVENLABS_API_KEY missing, questions will not be spoken aloud")
		return MockSynthesizer()
	return ElevenLabsSynthesizer()
