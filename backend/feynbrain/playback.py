"""
Playback Coordinator
====================

Speaks follow-up questions: synthesizes audio for a question and plays it
through the attached sink (the study WebSocket sends it to the browser and the
browser acknowledges with ``playback_ended``). At most one playback is active;
starting another one, stopping, or tearing down always releases the previous
audio handle. Failures are reported once and never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .settings import settings
from .synthesis import AudioHandle, SpeechSynthesizer

logger = logging.getLogger(__name__)

AudioSink = Callable[[AudioHandle], Awaitable[None]]


class PlaybackGroup:
	"""Coordinators sharing a group never play at the same time."""

	def __init__(self) -> None:
		self.current: Optional["PlaybackCoordinator"] = None

	async def claim(self, coordinator: "PlaybackCoordinator") -> None:
		previous, self.current = self.current, coordinator
		if previous is not None and previous is not coordinator:
			await previous.stop_playback()

	def release(self, coordinator: "PlaybackCoordinator") -> None:
		if self.current is coordinator:
			self.current = None


class PlaybackCoordinator:
	def __init__(
		self,
		synthesizer: SpeechSynthesizer,
		*,
		sink: Optional[AudioSink] = None,
		timeout: Optional[float] = None,
		on_state: Optional[Callable[[bool], Awaitable[None]]] = None,
		on_error: Optional[Callable[[str], Awaitable[None]]] = None,
		group: Optional[PlaybackGroup] = None,
	) -> None:
		self.synthesizer = synthesizer
		self.group = group
		self.sink = sink
		self.timeout = settings.playback_timeout_seconds if timeout is None else timeout
		self.on_state = on_state
		self.on_error = on_error
		self.is_playing = False
		self._handle: Optional[AudioHandle] = None
		self._ended: Optional[asyncio.Event] = None
		self._token = 0

	def attach_sink(self, sink: Optional[AudioSink]) -> None:
		self.sink = sink

	async def _set_playing(self, playing: bool) -> None:
		if self.is_playing == playing:
			return
		self.is_playing = playing
		if self.on_state is not None:
			await self.on_state(playing)

	async def _report(self, message: str) -> None:
		logger.error("Question playback failed: %s", message)
		if self.on_error is not None:
			await self.on_error(message)

	def _release_current(self) -> None:
		handle, self._handle = self._handle, None
		if handle is not None:
			handle.release()
		if self._ended is not None:
			self._ended.set()
			self._ended = None

	async def play_question(self, text: str) -> bool:
		"""Synthesize and play ``text``. Returns True when playback ran to the end."""
		await self.stop_playback()
		self._token += 1
		token = self._token
		if self.group is not None:
			await self.group.claim(self)
		await self._set_playing(True)
		try:
			handle = await self.synthesizer.synthesize(text)
		except Exception as e:
			if token == self._token:
				await self._set_playing(False)
				if self.group is not None:
					self.group.release(self)
				await self._report(getattr(e, "message", None) or str(e))
			return False
		if token != self._token:
			# Stopped or superseded while synthesizing
			handle.release()
			return False

		self._handle = handle
		ended = asyncio.Event()
		self._ended = ended
		try:
			if self.sink is None:
				# Nobody is listening; consume the handle so it is not replayed
				handle.consume()
			else:
				await self.sink(handle)
				try:
					await asyncio.wait_for(ended.wait(), timeout=self.timeout)
				except asyncio.TimeoutError:
					logger.warning("No playback_ended after %.0fs, assuming playback finished", self.timeout)
			return token == self._token
		except Exception as e:
			if token == self._token:
				await self._report(str(e))
			return False
		finally:
			if token == self._token:
				self._release_current()
				await self._set_playing(False)
				if self.group is not None:
					self.group.release(self)

	def mark_ended(self) -> None:
		if self._ended is not None:
			self._ended.set()

	async def stop_playback(self) -> None:
		"""Halt playback and release resources. Safe to call at any time."""
		self._token += 1
		self._release_current()
		await self._set_playing(False)
		if self.group is not None:
			self.group.release(self)
