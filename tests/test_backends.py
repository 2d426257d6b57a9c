import json
import logging

import httpx
import pytest

from feynbrain.errors import ServiceError
from feynbrain.llm_client import LLMClient
from feynbrain.settings import settings
from feynbrain.synthesis import AudioHandle, ElevenLabsSynthesizer
from feynbrain.transcription import GroqTranscriber, MockTranscriber, get_transcriber


@pytest.fixture
def no_openrouter(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)


def elevenlabs(handler, seen=None):
	def _record(request):
		if seen is not None:
			seen.append(request)
		return handler(request)
	return ElevenLabsSynthesizer("el-key", voice_id="voice-1", transport=httpx.MockTransport(_record))


@pytest.mark.asyncio
async def test_elevenlabs_returns_playable_handle():
	seen = []
	synth = elevenlabs(lambda request: httpx.Response(200, content=b"ID3-audio", headers={"content-type": "audio/mpeg"}), seen)
	handle = await synth.synthesize("What is chlorophyll?")
	assert isinstance(handle, AudioHandle)
	assert handle.text == "What is chlorophyll?"
	assert handle.mime_type == "audio/mpeg"
	assert handle.consume() == b"ID3-audio"
	request = seen[0]
	assert request.url.path.endswith("/text-to-speech/voice-1")
	assert request.headers["xi-api-key"] == "el-key"
	body = json.loads(request.content)
	assert body["text"] == "What is chlorophyll?"
	assert body["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.5}


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"response, expected",
	[
		(httpx.Response(401, json={"detail": {"status": "invalid_api_key", "message": "Invalid API key"}}), "401 - Invalid API key"),
		(httpx.Response(422, json={"detail": "Text too long"}), "422 - Text too long"),
		(httpx.Response(500, json=["unexpected", "shape"]), "500 - Unknown error"),
		(httpx.Response(502, content=b"<html>Bad gateway</html>"), "502 - Unknown error"),
	],
)
async def test_elevenlabs_errors_are_service_errors(response, expected):
	synth = elevenlabs(lambda request: response)
	with pytest.raises(ServiceError) as info:
		await synth.synthesize("Hello")
	assert info.value.message == f"ElevenLabs API error: {expected}"
	assert info.value.service == "synthesis"


@pytest.mark.asyncio
async def test_elevenlabs_empty_body_is_service_error():
	synth = elevenlabs(lambda request: httpx.Response(200, content=b""))
	with pytest.raises(ServiceError) as info:
		await synth.synthesize("Hello")
	assert info.value.message == "ElevenLabs returned no audio"


@pytest.mark.asyncio
async def test_groq_transcriber_posts_multipart_audio():
	seen = []

	def handler(request):
		seen.append(request)
		return httpx.Response(200, json={"text": "  Plants make sugar.  "})

	transcriber = GroqTranscriber("groq-key", model="whisper-large-v3", transport=httpx.MockTransport(handler))
	assert await transcriber.transcribe(b"\x1a\x45\xdf\xa3", "audio/webm;codecs=opus") == "Plants make sugar."
	request = seen[0]
	assert request.url.path.endswith("/audio/transcriptions")
	assert request.headers["Authorization"] == "Bearer groq-key"
	assert b'filename="recording.webm"' in request.content
	assert b"whisper-large-v3" in request.content


@pytest.mark.asyncio
async def test_groq_transcriber_skips_empty_audio():
	def handler(request):
		raise AssertionError("no request expected")

	transcriber = GroqTranscriber("groq-key", transport=httpx.MockTransport(handler))
	assert await transcriber.transcribe(b"") == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"response",
	[httpx.Response(500, json={"error": "boom"}), httpx.Response(200, json={"segments": []}), httpx.Response(200, content=b"not json")],
)
async def test_groq_transcriber_failures_are_service_errors(response):
	transcriber = GroqTranscriber("groq-key", transport=httpx.MockTransport(lambda request: response))
	with pytest.raises(ServiceError) as info:
		await transcriber.transcribe(b"audio")
	assert info.value.service == "transcription"


def test_transcriber_without_groq_key_degrades_to_mock(monkeypatch, caplog):
	monkeypatch.setattr(settings, "service_mode", "prod")
	monkeypatch.setattr(settings, "transcribe_provider", "groq")
	monkeypatch.setattr(settings, "groq_api_key", None)
	with caplog.at_level(logging.WARNING, logger="feynbrain.transcription"):
		transcriber = get_transcriber()
	assert isinstance(transcriber, MockTranscriber)
	assert "GROQ_API_KEY missing" in caplog.text

	monkeypatch.setattr(settings, "groq_api_key", "groq-key")
	assert isinstance(get_transcriber(), GroqTranscriber)


@pytest.mark.asyncio
async def test_gemini_reads_first_candidate(no_openrouter):
	seen = []

	def handler(request):
		seen.append(request)
		return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "A green pigment."}]}}]})

	client = LLMClient("gemini-key", provider="gemini", model="gemini-test", transport=httpx.MockTransport(handler))
	try:
		text = await client.generate("What is chlorophyll?", system="Be brief.", temperature=0.2)
	finally:
		await client.aclose()
	assert text == "A green pigment."
	request = seen[0]
	assert request.url.params["key"] == "gemini-key"
	assert request.url.path.endswith("/models/gemini-test:generateContent")
	body = json.loads(request.content)
	assert body["contents"][0]["parts"][0]["text"] == "What is chlorophyll?"
	assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
	assert body["generationConfig"] == {"temperature": 0.2}


@pytest.mark.asyncio
async def test_gemini_malformed_reply_raises(no_openrouter):
	client = LLMClient("gemini-key", provider="gemini", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})))
	try:
		with pytest.raises(RuntimeError):
			await client.generate("Hello")
	finally:
		await client.aclose()


@pytest.mark.asyncio
async def test_openrouter_fallback_after_primary_failure(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
	seen = []

	def handler(request):
		seen.append(request)
		if request.url.host == "openrouter.ai":
			return httpx.Response(200, json={"choices": [{"message": {"content": "from fallback"}}]})
		return httpx.Response(500, json={"error": "overloaded"})

	client = LLMClient("groq-key", provider="groq", transport=httpx.MockTransport(handler))
	try:
		assert await client.generate("Hello") == "from fallback"
	finally:
		await client.aclose()
	assert len(seen) == 2
	fallback = seen[1]
	assert fallback.headers["Authorization"] == "Bearer or-key"
	assert fallback.headers["X-Title"] == settings.openrouter_title
	assert json.loads(fallback.content)["model"] == settings.openrouter_model


@pytest.mark.asyncio
async def test_openrouter_fallback_failure_reports_both(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
	client = LLMClient("groq-key", provider="groq", transport=httpx.MockTransport(lambda request: httpx.Response(503)))
	try:
		with pytest.raises(RuntimeError) as info:
			await client.generate("Hello")
	finally:
		await client.aclose()
	assert "fallback via OpenRouter also failed" in str(info.value)


@pytest.mark.asyncio
async def test_no_fallback_without_openrouter_key(no_openrouter):
	seen = []

	def handler(request):
		seen.append(request)
		return httpx.Response(500)

	client = LLMClient("groq-key", provider="groq", transport=httpx.MockTransport(handler))
	try:
		with pytest.raises(httpx.HTTPStatusError):
			await client.generate("Hello")
	finally:
		await client.aclose()
	assert len(seen) == 1
