from __future__ import annotations
import json
import re
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings


def extract_json_block(text: str, *, expect: type = dict) -> Any:
	"""Extract a JSON object (or array, with ``expect=list``) from LLM output.

	Attempts to parse the entire text as JSON first, then searches for the first
	matching block using regex, since models often wrap JSON in prose or fences.

	Raises:
		ValueError: If no JSON value of the expected type can be extracted
	"""
	try:
		data = json.loads(text)
		if isinstance(data, expect):
			return data
	except (TypeError, ValueError):
		pass
	pattern = r"\[[\s\S]*\]" if expect is list else r"\{[\s\S]*\}"
	match = re.search(pattern, text or "")
	if match:
		try:
			data = json.loads(match.group(0))
			if isinstance(data, expect):
				return data
		except ValueError:
			pass
	raise ValueError("Failed to parse JSON from model output")


class LLMClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		provider: Optional[str] = None,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.provider = (provider or settings.llm_provider).lower()
		if self.provider == "gemini":
			self.api_key = api_key or settings.gemini_api_key
			if not self.api_key:
				raise ValueError("GEMINI_API_KEY is not configured")
			self.model = model or settings.gemini_model
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
		else:
			self.api_key = api_key or settings.groq_api_key
			if not self.api_key:
				raise ValueError("GROQ_API_KEY is not configured")
			self.model = model or settings.groq_model
			# Groq speaks the OpenAI chat completions protocol
			self.base_url = base_url or f"{settings.groq_base_url.rstrip('/')}/chat/completions"
		timeout = timeout or settings.llm_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def generate(
		self,
		prompt: str,
		*,
		system: Optional[str] = None,
		temperature: Optional[float] = None,
		allow_fallback: bool = True,
	) -> str:
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		last_error: Optional[Exception] = None
		try:
			if self.provider == "gemini":
				text = await self._post_gemini(prompt, system=system, temperature=temperature)
			else:
				text = await self._post_chat(
					self._client,
					self.base_url,
					{"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
					self.model,
					messages,
					temperature,
				)
			return text
		except (httpx.HTTPStatusError, httpx.RequestError) as err:
			last_error = err
		except (KeyError, IndexError, TypeError, ValueError) as err:
			last_error = RuntimeError(f"Unexpected {self.provider} response: {err}")
		if not allow_fallback or not self._fallback_enabled:
			raise last_error
		return await self._fallback_generate(messages, temperature, last_error)

	async def _post_chat(
		self,
		client: httpx.AsyncClient,
		url: str,
		headers: Dict[str, str],
		model: str,
		messages: List[Dict[str, str]],
		temperature: Optional[float],
	) -> str:
		payload: Dict[str, Any] = {"model": model, "messages": messages}
		if temperature is not None:
			payload["temperature"] = temperature
		r = await client.post(url, headers=headers, json=payload)
		r.raise_for_status()
		data = r.json()
		content = data["choices"][0]["message"]["content"]
		if not isinstance(content, str):
			raise ValueError("message content is not text")
		return content

	async def _post_gemini(self, prompt: str, *, system: Optional[str], temperature: Optional[float]) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if system:
			payload["systemInstruction"] = {"parts": [{"text": system}]}
		if temperature is not None:
			payload["generationConfig"] = {"temperature": temperature}
		r = await self._client.post(self.base_url, params={"key": self.api_key}, json=payload)
		r.raise_for_status()
		data = r.json()
		return data["candidates"][0]["content"]["parts"][0]["text"]

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(
		self,
		messages: List[Dict[str, str]],
		temperature: Optional[float],
		primary_error: Optional[Exception],
	) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		try:
			return await self._post_chat(
				self._fallback_client,
				self._openrouter_base_url,
				headers,
				self._openrouter_model,
				messages,
				temperature,
			)
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"{self.provider} primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err
