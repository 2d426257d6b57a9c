"""Domain models exchanged between the study components, the store and the API.

Field names are snake_case in Python and serialize with the camelCase keys the
browser client (and exported session files) use, e.g. ``sessionID`` and
``performanceMetrics``. Always dump with ``by_alias=True`` when the data leaves
the process.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
	WELL_UNDERSTOOD = "Well Understood"
	ALMOST_THERE = "Almost There"
	NEEDS_ATTENTION = "Needs Attention"


class StudyPhase(str, Enum):
	EXPLAIN = "explain"
	QUESTIONS = "questions"
	SUMMARY = "summary"


class _CamelModel(BaseModel):
	model_config = ConfigDict(populate_by_name=True)


class PerformanceMetrics(_CamelModel):
	"""Four sub-scores plus the score and category derived from them.

	Build instances through :func:`feynbrain.metrics.build_metrics` so that
	``overall_score`` and ``category`` stay consistent with the sub-scores.
	"""
	accuracy: int = Field(default=0, ge=0, le=100)
	completeness: int = Field(default=0, ge=0, le=100)
	own_words: int = Field(default=0, ge=0, le=100, alias="ownWords")
	logical_flow: int = Field(default=0, ge=0, le=100, alias="logicalFlow")
	overall_score: int = Field(default=0, ge=0, le=100, alias="overallScore")
	category: Category = Category.NEEDS_ATTENTION
	feedback: Optional[str] = None


class StudySession(_CamelModel):
	session_id: str = Field(alias="sessionID")
	timestamp: int = Field(description="Epoch milliseconds")
	original_text: str = Field(alias="originalText")
	user_explanation: str = Field(default="", alias="userExplanation")
	ai_questions: List[str] = Field(default_factory=list, alias="aiQuestions")
	user_responses: List[str] = Field(default_factory=list, alias="userResponses")
	performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics, alias="performanceMetrics")
	document_title: str = Field(default="", alias="documentTitle")


class UploadedDocument(_CamelModel):
	id: str
	name: str
	size: int = Field(ge=0)
	type: str = ""
	content: str
	uploaded_at: int = Field(alias="uploadedAt", description="Epoch milliseconds")


class AIAssistantState(_CamelModel):
	is_listening: bool = Field(default=False, alias="isListening")
	is_processing: bool = Field(default=False, alias="isProcessing")
	is_playing: bool = Field(default=False, alias="isPlaying")
	current_question: str = Field(default="", alias="currentQuestion")
	pass_count: int = Field(default=0, ge=0, alias="passCount")


class SessionSnapshot(_CamelModel):
	"""What the client needs to render the study view."""
	phase: StudyPhase
	session: StudySession
	assistant: AIAssistantState
	question_index: int = Field(alias="questionIndex")
	question_total: int = Field(alias="questionTotal")
	transcript: str = ""
	error: Optional[str] = None
	persisted: bool = False
