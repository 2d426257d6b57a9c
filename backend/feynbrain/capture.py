"""
Capture Coordinator
===================

Owns the single active speech capture of a study session. Fragments delivered
by the speech capture service are appended to a running buffer and joined with
spaces when the capture stops.

A silence timer (10 seconds by default) is restarted by every fragment. When it
fires, or when the service reports that it finished on its own, the capture is
stopped and the final transcript is handed to the ``on_auto_stop`` callback.
Every completion path cancels the timer, and a timer that fires for a capture
that has already finished does nothing.

Only one capture may be active at a time across every coordinator sharing the
same ``CaptureGuard``; the application shares one guard between all sessions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol

from .errors import CaptureConflictError
from .settings import settings
from .transcription import Transcriber

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]
CompleteCallback = Callable[[], None]


class CaptureHandle(Protocol):
	async def stop(self) -> None:
		...


class SpeechCaptureService(Protocol):
	async def start(self, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> CaptureHandle:
		...


class CaptureGuard:
	"""Tracks which coordinator currently owns the microphone."""

	def __init__(self) -> None:
		self.owner: Optional["CaptureCoordinator"] = None

	def acquire(self, coordinator: "CaptureCoordinator") -> None:
		if self.owner is not None and self.owner is not coordinator:
			raise CaptureConflictError("Another capture is already active")
		self.owner = coordinator

	def release(self, coordinator: "CaptureCoordinator") -> None:
		if self.owner is coordinator:
			self.owner = None


# ============================================================================
# SPEECH CAPTURE SERVICES
# ============================================================================

class StreamingCaptureHandle:
	"""Capture fed from outside, typically by the study WebSocket.

	Audio chunks are transcribed in arrival order by a single consumer task;
	text fragments (browser-side recognition) join the same queue so ordering is
	preserved across both kinds of input.
	"""

	def __init__(self, transcriber: Transcriber, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> None:
		self._transcriber = transcriber
		self._on_fragment = on_fragment
		self._on_complete = on_complete
		self._queue: asyncio.Queue = asyncio.Queue()
		self._closed = False
		self._consumer = asyncio.create_task(self._consume())

	def feed_audio(self, audio: bytes, mime_type: str = "audio/webm") -> None:
		if not self._closed and audio:
			self._queue.put_nowait(("audio", audio, mime_type))

	def feed_text(self, text: str) -> None:
		if not self._closed and text:
			self._queue.put_nowait(("text", text, None))

	async def _consume(self) -> None:
		while True:
			kind, payload, mime_type = await self._queue.get()
			if kind == "end":
				return
			if kind == "text":
				self._on_fragment(payload)
				continue
			try:
				text = await self._transcriber.transcribe(payload, mime_type)
			except Exception as e:
				# A lost chunk should not end the capture; the learner can keep talking
				logger.error("Dropping audio chunk that failed to transcribe: %s", e)
				continue
			if text:
				self._on_fragment(text)

	async def stop(self) -> None:
		if self._closed:
			return
		self._closed = True
		# Drain whatever is already queued so the final transcript is complete
		self._queue.put_nowait(("end", None, None))
		await self._consumer


class StreamingCaptureService:
	def __init__(self, transcriber: Transcriber) -> None:
		self.transcriber = transcriber

	async def start(self, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> StreamingCaptureHandle:
		return StreamingCaptureHandle(self.transcriber, on_fragment, on_complete)


class ScriptedCaptureHandle:
	def __init__(self, phrases: List[str], interval: float, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> None:
		self._task = asyncio.create_task(self._run(phrases, interval, on_fragment, on_complete))

	async def _run(self, phrases: List[str], interval: float, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> None:
		for phrase in phrases:
			await asyncio.sleep(interval)
			on_fragment(phrase)
		on_complete()

	async def stop(self) -> None:
		if not self._task.done():
			self._task.cancel()
			try:
				await self._task
			except asyncio.CancelledError:
				pass


class ScriptedCaptureService:
	"""Emits a fixed list of phrases at an interval, then completes.

	Stands in for the microphone in mock mode and tests.
	"""

	DEFAULT_PHRASES: List[str] = [
		"So basically, this concept is about...",
		"The main idea here is that...",
		"What I understand from this is...",
		"The key point seems to be...",
		"In simpler terms, this means...",
	]

	def __init__(self, phrases: Optional[List[str]] = None, interval: float = 2.0) -> None:
		self.phrases = list(phrases) if phrases is not None else list(self.DEFAULT_PHRASES)
		self.interval = interval

	async def start(self, on_fragment: FragmentCallback, on_complete: CompleteCallback) -> ScriptedCaptureHandle:
		return ScriptedCaptureHandle(self.phrases, self.interval, on_fragment, on_complete)


# ============================================================================
# COORDINATOR
# ============================================================================

class CaptureCoordinator:
	def __init__(
		self,
		service: SpeechCaptureService,
		*,
		guard: Optional[CaptureGuard] = None,
		silence_timeout: Optional[float] = None,
		on_auto_stop: Optional[Callable[[str], Awaitable[None]]] = None,
		on_fragment: Optional[Callable[[str], None]] = None,
	) -> None:
		self.service = service
		self.guard = guard or CaptureGuard()
		self.silence_timeout = settings.silence_timeout_seconds if silence_timeout is None else silence_timeout
		self.on_auto_stop = on_auto_stop
		self.on_fragment = on_fragment
		self.handle: Optional[CaptureHandle] = None
		self._buffer: List[str] = []
		self._active = False
		self._accepting = False
		self._starting = False
		self._generation = 0
		self._timer: Optional[asyncio.Task] = None
		self._auto_task: Optional[asyncio.Task] = None

	@property
	def active(self) -> bool:
		return self._active or self._starting

	@property
	def transcript(self) -> str:
		return " ".join(self._buffer)

	async def start_capture(self) -> None:
		if self.active:
			logger.warning("Capture requested while one is already active")
			raise CaptureConflictError("Already capturing")
		try:
			self.guard.acquire(self)
		except CaptureConflictError:
			logger.warning("Capture requested while another session is capturing")
			raise
		self._starting = True
		self._generation += 1
		generation = self._generation
		self._buffer = []
		try:
			self.handle = await self.service.start(
				lambda text: self._handle_fragment(generation, text),
				lambda: self._handle_complete(generation),
			)
		except Exception:
			self.guard.release(self)
			raise
		finally:
			self._starting = False
		self._active = True
		self._accepting = True
		self._restart_timer()

	def feed_audio(self, audio: bytes, mime_type: str = "audio/webm") -> bool:
		feed = getattr(self.handle, "feed_audio", None)
		if not self._active or feed is None:
			return False
		feed(audio, mime_type)
		return True

	def feed_text(self, text: str) -> bool:
		feed = getattr(self.handle, "feed_text", None)
		if not self._active or feed is None:
			return False
		feed(text)
		return True

	def _handle_fragment(self, generation: int, text: str) -> None:
		if generation != self._generation or not self._accepting:
			return
		text = (text or "").strip()
		if not text:
			return
		self._buffer.append(text)
		if self.on_fragment is not None:
			self.on_fragment(text)
		if self._active:
			self._restart_timer()

	def _handle_complete(self, generation: int) -> None:
		if generation != self._generation or not self._active:
			return
		self._schedule_auto_stop(generation)

	def _restart_timer(self) -> None:
		self._cancel_timer()
		self._timer = asyncio.create_task(self._silence_timer(self._generation))

	def _cancel_timer(self) -> None:
		timer, self._timer = self._timer, None
		if timer is not None and timer is not asyncio.current_task() and not timer.done():
			timer.cancel()

	async def _silence_timer(self, generation: int) -> None:
		await asyncio.sleep(self.silence_timeout)
		if generation != self._generation or not self._active:
			return
		logger.info("No speech for %.1fs, stopping capture", self.silence_timeout)
		self._timer = None
		self._schedule_auto_stop(generation)

	def _schedule_auto_stop(self, generation: int) -> None:
		if self._auto_task is not None and not self._auto_task.done():
			return
		self._auto_task = asyncio.create_task(self._auto_stop(generation))

	async def _auto_stop(self, generation: int) -> None:
		if generation != self._generation or not self._active:
			return
		transcript = await self.stop_capture()
		if transcript is not None and self.on_auto_stop is not None:
			try:
				await self.on_auto_stop(transcript)
			except Exception:
				logger.exception("Handling the auto-stopped transcript failed")

	async def stop_capture(self) -> Optional[str]:
		"""Finalize the active capture and return its transcript (possibly empty).

		Returns ``None`` and logs a warning when no capture is active, so the
		transcript of a capture is only ever returned once.
		"""
		if not self._active:
			logger.warning("stop_capture called with no active capture")
			return None
		self._active = False
		self._cancel_timer()
		handle, self.handle = self.handle, None
		try:
			if handle is not None:
				await handle.stop()
		finally:
			self._accepting = False
			self.guard.release(self)
		transcript = " ".join(self._buffer)
		self._buffer = []
		return transcript

	async def cancel(self) -> None:
		"""Stop without delivering the transcript anywhere; used on pass and teardown."""
		if self._active:
			await self.stop_capture()
		auto_task, self._auto_task = self._auto_task, None
		if auto_task is not None and auto_task is not asyncio.current_task() and not auto_task.done():
			auto_task.cancel()
