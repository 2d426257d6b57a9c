"""Live study sessions of this process, keyed by session id.

The registry builds each Session Controller with the collaborators selected by
the settings (real services or mocks) and shares one capture guard between
them, so only one microphone capture can be active in the application, and one
playback group so only one question is spoken at a time.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .capture import CaptureGuard, ScriptedCaptureService, SpeechCaptureService, StreamingCaptureService
from .controller import SessionController
from .errors import NotFoundError
from .evaluation import EvaluationClient, LLMEvaluationClient, MockEvaluationClient
from .playback import PlaybackGroup
from .questions import LLMQuestionGenerator, MockQuestionGenerator, QuestionGenerator
from .settings import settings
from .store import DocumentStore, SessionStore
from .synthesis import SpeechSynthesizer, get_synthesizer
from .transcription import get_transcriber

logger = logging.getLogger(__name__)


def default_evaluator() -> EvaluationClient:
	return MockEvaluationClient() if settings.mock_mode else LLMEvaluationClient()


def default_question_generator() -> QuestionGenerator:
	return MockQuestionGenerator() if settings.mock_mode else LLMQuestionGenerator()


def default_capture_service() -> SpeechCaptureService:
	if settings.mock_mode:
		return ScriptedCaptureService()
	return StreamingCaptureService(get_transcriber())


class SessionRegistry:
	def __init__(
		self,
		sessions: SessionStore,
		documents: DocumentStore,
		*,
		evaluator_factory: Callable[[], EvaluationClient] = default_evaluator,
		question_generator_factory: Callable[[], QuestionGenerator] = default_question_generator,
		capture_service_factory: Callable[[], SpeechCaptureService] = default_capture_service,
		synthesizer_factory: Callable[[], SpeechSynthesizer] = get_synthesizer,
		controller_options: Optional[Dict[str, Any]] = None,
	) -> None:
		self.sessions = sessions
		self.documents = documents
		self.capture_guard = CaptureGuard()
		self.playback_group = PlaybackGroup()
		self._evaluator_factory = evaluator_factory
		self._question_generator_factory = question_generator_factory
		self._capture_service_factory = capture_service_factory
		self._synthesizer_factory = synthesizer_factory
		self._controller_options = controller_options or {}
		self._controllers: Dict[str, SessionController] = {}

	def __len__(self) -> int:
		return len(self._controllers)

	def create(self, document_id: str) -> SessionController:
		document = self.documents.get(document_id)
		if document is None:
			raise NotFoundError("Document not found")
		controller = SessionController(
			document,
			evaluator=self._evaluator_factory(),
			question_generator=self._question_generator_factory(),
			store=self.sessions,
			capture_service=self._capture_service_factory(),
			synthesizer=self._synthesizer_factory(),
			capture_guard=self.capture_guard,
			playback_group=self.playback_group,
			**self._controller_options,
		)
		self._controllers[controller.session_id] = controller
		logger.info("Started study session %s for %r", controller.session_id, document.name)
		return controller

	def get(self, session_id: str) -> SessionController:
		controller = self._controllers.get(session_id)
		if controller is None:
			raise NotFoundError("Session not found or expired")
		return controller

	async def restart(self, session_id: str) -> SessionController:
		controller = self.get(session_id)
		await controller.restart()
		# Restarting issues a new session id
		self._controllers.pop(session_id, None)
		self._controllers[controller.session_id] = controller
		return controller

	async def close(self, session_id: str) -> None:
		controller = self._controllers.pop(session_id, None)
		if controller is None:
			raise NotFoundError("Session not found or expired")
		await controller.close()

	async def close_all(self) -> None:
		controllers = list(self._controllers.values())
		self._controllers.clear()
		for controller in controllers:
			await controller.close()
