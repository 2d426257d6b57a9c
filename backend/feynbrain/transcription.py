"""Speech-to-text backends used to turn recorded audio chunks into transcript fragments."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol

import httpx
from google.cloud import speech_v1p1beta1 as speech
from google.api_core.exceptions import GoogleAPIError

from .errors import ServiceError
from .settings import settings

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
	async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
		...


class GroqTranscriber:
	"""Groq Whisper over the OpenAI-compatible audio endpoint."""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.groq_api_key
		if not self.api_key:
			raise ValueError("GROQ_API_KEY is not configured")
		self.model = model or settings.transcribe_model
		self.url = f"{settings.groq_base_url.rstrip('/')}/audio/transcriptions"
		self._transport = transport

	async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
		if not audio:
			return ""
		extension = mime_type.split("/")[-1].split(";")[0] or "webm"
		files = {"file": (f"recording.{extension}", audio, mime_type)}
		try:
			async with httpx.AsyncClient(timeout=settings.llm_timeout_seconds, transport=self._transport) as client:
				r = await client.post(
					self.url,
					headers={"Authorization": f"Bearer {self.api_key}"},
					data={"model": self.model},
					files=files,
				)
				r.raise_for_status()
				data = r.json()
		except (httpx.HTTPError, ValueError) as e:
			logger.error("Groq transcription failed: %s", e)
			raise ServiceError("Failed to transcribe audio", service="transcription") from e
		text = data.get("text") if isinstance(data, dict) else None
		if not isinstance(text, str):
			raise ServiceError("Transcription service returned no text", service="transcription")
		return text.strip()


class GoogleTranscriber:
	"""Google Cloud Speech-to-Text, run in a worker thread (the client is blocking)."""

	def __init__(self, language_code: Optional[str] = None) -> None:
		self.language_code = language_code or settings.transcribe_language
		self._client: Optional[speech.SpeechClient] = None

	def _get_client(self) -> speech.SpeechClient:
		if self._client is None:
			self._client = speech.SpeechClient()
		return self._client

	def _recognize(self, audio: bytes) -> str:
		config = speech.RecognitionConfig(
			encoding=speech.RecognitionConfig.AudioEncoding.WEBM_OPUS,
			language_code=self.language_code,
			enable_automatic_punctuation=True,
			model="default",
		)
		response = self._get_client().recognize(config=config, audio=speech.RecognitionAudio(content=audio))
		parts = [r.alternatives[0].transcript for r in response.results if r.alternatives]
		return " ".join(p.strip() for p in parts if p.strip())

	async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
		if not audio:
			return ""
		try:
			return await asyncio.to_thread(self._recognize, audio)
		except GoogleAPIError as e:
			logger.error("Google transcription failed: %s", e)
			raise ServiceError(f"Speech recognition API error: {e}", service="transcription") from e


class MockTranscriber:
	"""Returns canned phrases in order, one per audio chunk."""

	PHRASES: List[str] = [
		"So basically, this concept is about...",
		"The main idea here is that...",
		"What I understand from this is...",
		"The key point seems to be...",
		"In simpler terms, this means...",
	]

	def __init__(self, phrases: Optional[List[str]] = None) -> None:
		self.phrases = list(phrases) if phrases is not None else list(self.PHRASES)
		self._index = 0

	async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
		if not audio or not self.phrases:
			return ""
		phrase = self.phrases[self._index % len(self.phrases)]
		self._index += 1
		return phrase


def get_transcriber() -> Transcriber:
	if settings.mock_mode:
		return MockTranscriber()
	if settings.transcribe_provider.lower() == "google":
		return GoogleTranscriber()
	if not settings.groq_api_key:
		logger.warning("GROQ_API_KEY missing, recorded audio will get placeholder transcripts")
		return MockTranscriber()
	return GroqTranscriber()
