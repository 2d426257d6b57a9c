"""
Session Controller
==================

Phase state machine for one Feynman study session:

    explain  ->  questions  ->  summary

- explain: the learner explains the document. A non-empty transcript is
  evaluated, follow-up questions are generated from the explanation and the
  fresh metrics, and only when both succeed is the session updated and moved to
  ``questions``. The first question is then spoken and capture is re-armed for
  the answer.
- questions: each non-empty answer is recorded and the next question is asked.
  A pass increments ``passCount``; the pass that reaches ``max_passes`` moves on
  without recording an answer. Leaving the last question, by answer or by pass,
  finalizes the session.
- summary: the explanation and all answers are re-evaluated as one text, the
  metrics are replaced wholesale and the session is persisted exactly once.

Blank transcripts never change the phase. Service errors leave the phase where
it was so the learner can retry. Every phase change or question change bumps an
epoch; work started under an older epoch (a late evaluation, a finished
playback for a question that is no longer current) is discarded.

Passing stops an active capture and drops its transcript; it does not interact
with the silence timer otherwise.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Set

from .capture import CaptureCoordinator, CaptureGuard, SpeechCaptureService
from .errors import CaptureConflictError, PhaseError, ServiceError, StorageError
from .evaluation import EvaluationClient
from .playback import PlaybackCoordinator, PlaybackGroup
from .questions import FALLBACK_QUESTIONS, QuestionGenerator
from .schemas import (
	AIAssistantState,
	PerformanceMetrics,
	SessionSnapshot,
	StudyPhase,
	StudySession,
	UploadedDocument,
)
from .settings import settings
from .store import SessionStore, now_ms
from .synthesis import SpeechSynthesizer

logger = logging.getLogger(__name__)

Listener = Callable[[SessionSnapshot], Awaitable[None]]
FragmentListener = Callable[[str], Awaitable[None]]


def new_session_id() -> str:
	return uuid.uuid4().hex


class SessionController:
	def __init__(
		self,
		document: UploadedDocument,
		*,
		evaluator: EvaluationClient,
		question_generator: QuestionGenerator,
		store: SessionStore,
		capture_service: SpeechCaptureService,
		synthesizer: SpeechSynthesizer,
		capture_guard: Optional[CaptureGuard] = None,
		playback_group: Optional[PlaybackGroup] = None,
		silence_timeout: Optional[float] = None,
		playback_timeout: Optional[float] = None,
		max_passes: Optional[int] = None,
		auto_rearm_capture: Optional[bool] = None,
		clock: Callable[[], int] = now_ms,
		id_factory: Callable[[], str] = new_session_id,
	) -> None:
		self.document = document
		self.evaluator = evaluator
		self.question_generator = question_generator
		self.store = store
		self.max_passes = max_passes or settings.max_passes
		self.auto_rearm_capture = settings.auto_rearm_capture if auto_rearm_capture is None else auto_rearm_capture
		self._clock = clock
		self._id_factory = id_factory
		self._listeners: List[Listener] = []
		self._fragment_listeners: List[FragmentListener] = []
		self._tasks: Set[asyncio.Task] = set()
		self._closed = False
		self._epoch = 0

		self.capture = CaptureCoordinator(
			capture_service,
			guard=capture_guard,
			silence_timeout=silence_timeout,
			on_auto_stop=self._handle_auto_stop,
			on_fragment=self._handle_fragment,
		)
		self.playback = PlaybackCoordinator(
			synthesizer,
			timeout=playback_timeout,
			on_state=self._handle_playing,
			on_error=self._handle_playback_error,
			group=playback_group,
		)
		self._reset_state()

	def _reset_state(self) -> None:
		self.session = StudySession(
			session_id=self._id_factory(),
			timestamp=self._clock(),
			original_text=self.document.content,
			document_title=self.document.name,
		)
		self.phase = StudyPhase.EXPLAIN
		self.assistant = AIAssistantState()
		self.question_index = 0
		self.transcript = ""
		self.error: Optional[str] = None
		self.persisted = False
		# Never reuse an epoch: results still in flight for the old attempt must not match
		self._epoch += 1

	# ------------------------------------------------------------------
	# Observation
	# ------------------------------------------------------------------

	@property
	def session_id(self) -> str:
		return self.session.session_id

	@property
	def has_pending_question(self) -> bool:
		return self.phase == StudyPhase.QUESTIONS and self.question_index < len(self.session.ai_questions)

	@property
	def awaiting_summary(self) -> bool:
		"""All questions are done but the final evaluation has not succeeded yet."""
		return self.phase == StudyPhase.QUESTIONS and not self.has_pending_question

	def snapshot(self) -> SessionSnapshot:
		return SessionSnapshot(
			phase=self.phase,
			session=self.session.model_copy(deep=True),
			assistant=self.assistant.model_copy(),
			question_index=self.question_index,
			question_total=len(self.session.ai_questions),
			transcript=self.transcript,
			error=self.error,
			persisted=self.persisted,
		)

	def add_listener(self, listener: Listener) -> None:
		self._listeners.append(listener)

	def remove_listener(self, listener: Listener) -> None:
		if listener in self._listeners:
			self._listeners.remove(listener)

	def add_fragment_listener(self, listener: FragmentListener) -> None:
		self._fragment_listeners.append(listener)

	def remove_fragment_listener(self, listener: FragmentListener) -> None:
		if listener in self._fragment_listeners:
			self._fragment_listeners.remove(listener)

	async def _notify(self) -> None:
		if not self._listeners:
			return
		snapshot = self.snapshot()
		for listener in list(self._listeners):
			try:
				await listener(snapshot)
			except Exception:
				logger.exception("Session listener failed")

	# ------------------------------------------------------------------
	# Capture
	# ------------------------------------------------------------------

	async def start_capture(self) -> None:
		if self.phase == StudyPhase.SUMMARY:
			raise PhaseError("Session is finished")
		if self.assistant.is_processing:
			raise PhaseError("Still processing the previous recording")
		if self.awaiting_summary:
			raise PhaseError("All questions are done; finalize the session")
		# Never listen while a question is being spoken
		await self.playback.stop_playback()
		await self.capture.start_capture()
		self.transcript = ""
		self.error = None
		self.assistant.is_listening = True
		await self._notify()

	async def stop_capture(self) -> SessionSnapshot:
		transcript = await self.capture.stop_capture()
		self.assistant.is_listening = False
		if transcript is None:
			await self._notify()
			return self.snapshot()
		await self.submit_transcript(transcript)
		return self.snapshot()

	def feed_audio(self, audio: bytes, mime_type: str = "audio/webm") -> bool:
		return self.capture.feed_audio(audio, mime_type)

	def feed_text(self, text: str) -> bool:
		return self.capture.feed_text(text)

	def _handle_fragment(self, text: str) -> None:
		self.transcript = f"{self.transcript} {text}" if self.transcript else text
		for listener in list(self._fragment_listeners):
			self._spawn(listener(text))

	async def _handle_auto_stop(self, transcript: str) -> None:
		self.assistant.is_listening = False
		try:
			await self.submit_transcript(transcript)
		except (ServiceError, PhaseError) as e:
			# Already recorded in self.error / logged; nobody is awaiting this call
			logger.warning("Auto-stopped transcript not applied: %s", e.message)

	# ------------------------------------------------------------------
	# Transcripts
	# ------------------------------------------------------------------

	async def submit_transcript(self, text: str) -> SessionSnapshot:
		"""Apply a finished transcript to the current phase.

		Blank transcripts are discarded without any state change.
		"""
		if not text or not text.strip():
			logger.info("Discarding empty transcript in phase %s", self.phase.value)
			await self._notify()
			return self.snapshot()
		# Fragments still arriving belong to this transcript, not the next phase
		await self.capture.cancel()
		self.assistant.is_listening = False
		self.transcript = text
		if self.phase == StudyPhase.EXPLAIN:
			await self._process_explanation(text)
		elif self.phase == StudyPhase.QUESTIONS:
			if not self.has_pending_question:
				raise PhaseError("All questions are done; finalize the session")
			await self._record_answer(text)
		else:
			logger.info("Ignoring transcript received after the session finished")
		return self.snapshot()

	async def _process_explanation(self, explanation: str) -> None:
		if self.assistant.is_processing:
			raise PhaseError("Already processing an explanation")
		epoch = self._epoch
		self.assistant.is_processing = True
		self.error = None
		await self._notify()
		try:
			metrics = await self.evaluator.evaluate(self.session.original_text, explanation)
			questions = await self._generate_questions(explanation, metrics)
		except ServiceError as e:
			if epoch == self._epoch:
				self.assistant.is_processing = False
				self.error = e.message
				await self._notify()
			raise
		except BaseException:
			if epoch == self._epoch:
				self.assistant.is_processing = False
			raise

		if epoch != self._epoch or self._closed:
			logger.info("Discarding evaluation result for a session that moved on")
			return

		self.session = self.session.model_copy(update={
			"user_explanation": explanation,
			"performance_metrics": metrics,
			"ai_questions": list(questions),
		})
		self.phase = StudyPhase.QUESTIONS
		self.question_index = 0
		self._epoch += 1
		self.assistant.is_processing = False
		self.assistant.current_question = questions[0]
		self.assistant.pass_count = 0
		self.transcript = ""
		await self._notify()
		self._present_current_question()

	async def _generate_questions(self, explanation: str, metrics: PerformanceMetrics) -> List[str]:
		try:
			questions = await self.question_generator.generate_questions(explanation, metrics)
		except Exception as e:
			logger.warning("Question generator raised, using fallback questions: %s", e)
			questions = []
		questions = [q for q in questions if isinstance(q, str) and q.strip()]
		return questions or list(FALLBACK_QUESTIONS)

	async def _record_answer(self, answer: str) -> None:
		self.session = self.session.model_copy(update={
			"user_responses": [*self.session.user_responses, answer],
		})
		await self._advance()

	# ------------------------------------------------------------------
	# Questions
	# ------------------------------------------------------------------

	async def pass_question(self) -> SessionSnapshot:
		if not self.has_pending_question:
			raise PhaseError("There is no question to pass")
		if self.assistant.is_processing:
			raise PhaseError("Still processing")
		# Drop any capture in progress, including one that is auto-stopping
		await self.capture.cancel()
		self.assistant.is_listening = False
		self.transcript = ""
		self.assistant.pass_count += 1
		if self.assistant.pass_count >= self.max_passes:
			await self._advance()
		else:
			await self._notify()
		return self.snapshot()

	async def _advance(self) -> None:
		await self.playback.stop_playback()
		self.assistant.pass_count = 0
		self._epoch += 1
		if self.question_index < len(self.session.ai_questions) - 1:
			self.question_index += 1
			self.assistant.current_question = self.session.ai_questions[self.question_index]
			await self._notify()
			self._present_current_question()
			return
		self.question_index = len(self.session.ai_questions)
		self.assistant.current_question = ""
		await self._finalize()

	async def finalize(self) -> SessionSnapshot:
		"""Retry the summary step after a failed final evaluation."""
		if not self.awaiting_summary:
			raise PhaseError("Session is not ready for its summary")
		await self._finalize()
		return self.snapshot()

	async def _finalize(self) -> None:
		if self.assistant.is_processing:
			raise PhaseError("Already processing")
		epoch = self._epoch
		aggregated = " ".join([self.session.user_explanation, *self.session.user_responses]).strip()
		self.assistant.is_processing = True
		self.error = None
		await self._notify()
		try:
			metrics = await self.evaluator.evaluate(self.session.original_text, aggregated)
		except ServiceError as e:
			if epoch == self._epoch:
				self.assistant.is_processing = False
				self.error = e.message
				await self._notify()
			raise
		except BaseException:
			if epoch == self._epoch:
				self.assistant.is_processing = False
			raise
		if epoch != self._epoch or self._closed:
			logger.info("Discarding final evaluation for a session that moved on")
			return

		self.session = self.session.model_copy(update={
			"performance_metrics": metrics,
			"timestamp": self._clock(),
		})
		self.phase = StudyPhase.SUMMARY
		self._epoch += 1
		self.assistant.is_processing = False
		self.transcript = ""
		try:
			self.store.save(self.session)
			self.persisted = True
		except StorageError:
			logger.exception("Could not persist session %s", self.session_id)
			self.persisted = False
		await self._notify()

	# ------------------------------------------------------------------
	# Playback
	# ------------------------------------------------------------------

	def _present_current_question(self) -> None:
		self._spawn(self._present_question(self._epoch, self.assistant.current_question))

	async def _present_question(self, epoch: int, question: str) -> None:
		await self.playback.play_question(question)
		if epoch != self._epoch or self._closed or not self.has_pending_question:
			return
		if self.auto_rearm_capture and not self.capture.active:
			try:
				await self.start_capture()
			except (CaptureConflictError, PhaseError) as e:
				logger.warning("Could not re-arm capture: %s", e.message)

	async def play_current_question(self) -> SessionSnapshot:
		if not self.has_pending_question:
			raise PhaseError("There is no question to play")
		if self.capture.active:
			raise PhaseError("Stop recording before replaying the question")
		self._present_current_question()
		return self.snapshot()

	async def stop_playback(self) -> None:
		await self.playback.stop_playback()

	def playback_ended(self) -> None:
		self.playback.mark_ended()

	async def _handle_playing(self, playing: bool) -> None:
		self.assistant.is_playing = playing
		await self._notify()

	async def _handle_playback_error(self, message: str) -> None:
		self.error = message
		await self._notify()

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	def _spawn(self, coro: Awaitable[None]) -> None:
		task = asyncio.ensure_future(coro)
		self._tasks.add(task)
		task.add_done_callback(self._task_done)

	def _task_done(self, task: asyncio.Task) -> None:
		self._tasks.discard(task)
		if not task.cancelled() and task.exception() is not None:
			logger.error("Background session task failed", exc_info=task.exception())

	async def _release_io(self) -> None:
		await self.capture.cancel()
		await self.playback.stop_playback()
		current = asyncio.current_task()
		pending = [t for t in self._tasks if t is not current and not t.done()]
		for task in pending:
			task.cancel()
		if pending:
			await asyncio.gather(*pending, return_exceptions=True)

	async def restart(self) -> SessionSnapshot:
		"""Abandon this attempt and start over on the same document with a new session id."""
		await self._release_io()
		self._reset_state()
		await self._notify()
		return self.snapshot()

	async def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._epoch += 1
		await self._release_io()
		self.assistant.is_listening = False
		self.assistant.is_playing = False
		self._listeners.clear()
		self._fragment_listeners.clear()

	async def wait_idle(self) -> None:
		"""Wait for background playback / re-arm work to finish (used by tests and shutdown)."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)
