"""Follow-up question generation.

A failed or empty generation never fails the session: the built-in
``FALLBACK_QUESTIONS`` are used instead so the learner can keep going.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional, Protocol, Sequence

from .llm_client import LLMClient, extract_json_block
from .schemas import PerformanceMetrics
from .settings import settings

logger = logging.getLogger(__name__)

FALLBACK_QUESTIONS: List[str] = [
	"Can you explain that again more simply?",
	"What is the main idea behind what you just said?",
	"Can you give a real-world example of that?",
]

MOCK_QUESTION_BANK: List[str] = [
	"Can you explain this concept as if you were teaching it to a 5-year-old?",
	"What would happen if this principle didn't exist?",
	"How does this relate to something you encounter in daily life?",
	"What's the most important thing someone should remember about this topic?",
	"Can you think of an analogy that might help explain this better?",
]

QUESTION_SYSTEM_PROMPT = (
	"You are an engaging tutor using the Feynman technique. Based on the student's explanation, "
	"generate {count} thoughtful follow-up questions that directly target their weak points and "
	"prompt them to simplify or connect ideas. Return them as a JSON array of strings."
)

# Hard upper bound on what the question service may return
MAX_QUESTIONS_LIMIT = 5


class QuestionGenerator(Protocol):
	async def generate_questions(self, explanation: str, metrics: PerformanceMetrics) -> List[str]:
		...


def normalize_questions(raw: object, limit: int) -> List[str]:
	"""Keep non-blank strings, capped at ``limit``; fall back when nothing is left."""
	questions: List[str] = []
	if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
		for item in raw:
			if isinstance(item, str) and item.strip():
				questions.append(item.strip())
	questions = questions[:max(1, min(limit, MAX_QUESTIONS_LIMIT))]
	if not questions:
		return list(FALLBACK_QUESTIONS)
	return questions


def _build_question_prompt(explanation: str, metrics: PerformanceMetrics, count: int) -> str:
	metrics_json = json.dumps(metrics.model_dump(by_alias=True, mode="json"), indent=2)
	return (
		f"Student's explanation:\n{explanation}\n\n"
		f"Performance metrics:\n{metrics_json}\n\n"
		f"Generate {count} highly personalized follow-up questions.\n"
		"Return your response strictly as valid JSON, e.g.:\n"
		'["Question 1", "Question 2", "Question 3"]'
	)


def _unwrap_questions(raw: str) -> object:
	# Accept either a bare array or {"questions": [...]}
	try:
		return extract_json_block(raw, expect=list)
	except ValueError:
		data = extract_json_block(raw, expect=dict)
		return data.get("questions")


class LLMQuestionGenerator:
	def __init__(
		self,
		client_factory: Callable[[], LLMClient] = LLMClient,
		*,
		max_questions: Optional[int] = None,
		temperature: float = 0.7,
	) -> None:
		self._client_factory = client_factory
		self.max_questions = max_questions or settings.max_questions
		self._temperature = temperature

	async def generate_questions(self, explanation: str, metrics: PerformanceMetrics) -> List[str]:
		if not explanation.strip():
			return list(FALLBACK_QUESTIONS)
		client: Optional[LLMClient] = None
		try:
			client = self._client_factory()
			raw = await client.generate(
				_build_question_prompt(explanation, metrics, self.max_questions),
				system=QUESTION_SYSTEM_PROMPT.format(count=self.max_questions),
				temperature=self._temperature,
			)
			return normalize_questions(_unwrap_questions(raw), self.max_questions)
		except Exception as e:
			logger.warning("Question generation failed, using fallback questions: %s", e)
			return list(FALLBACK_QUESTIONS)
		finally:
			if client is not None:
				await client.aclose()


class MockQuestionGenerator:
	"""Picks questions from a fixed bank: three for weaker explanations, two otherwise.

	``questions`` overrides the bank output entirely (an empty list exercises the
	fallback path).
	"""

	def __init__(self, questions: Optional[List[str]] = None, *, max_questions: Optional[int] = None) -> None:
		self.questions = questions
		self.max_questions = max_questions or settings.max_questions
		self.calls: List[tuple] = []

	async def generate_questions(self, explanation: str, metrics: PerformanceMetrics) -> List[str]:
		self.calls.append((explanation, metrics))
		if self.questions is not None:
			return normalize_questions(self.questions, self.max_questions)
		count = 3 if metrics.overall_score < 70 else 2
		# Rotate through the bank by explanation length so output varies but stays deterministic
		start = len(explanation) % len(MOCK_QUESTION_BANK)
		picked = [MOCK_QUESTION_BANK[(start + i) % len(MOCK_QUESTION_BANK)] for i in range(count)]
		return normalize_questions(picked, self.max_questions)
