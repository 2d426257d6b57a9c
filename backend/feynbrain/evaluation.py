"""
Evaluation Client
=================

Scores a learner's explanation of a source text on four axes (accuracy,
completeness, use of own words, logical flow). The overall score and the
category are always derived locally from the four sub-scores.

Two implementations share the same interface so the Session Controller can use
either without changes:

- ``LLMEvaluationClient``: asks the configured chat model for strict JSON.
- ``MockEvaluationClient``: deterministic heuristic used in mock mode and tests.

Neither retries. Any failure surfaces as ``ServiceError`` and the caller decides
whether to let the learner record again.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Protocol

from .errors import ServiceError
from .llm_client import LLMClient, extract_json_block
from .metrics import build_metrics, metrics_from_payload
from .schemas import PerformanceMetrics

logger = logging.getLogger(__name__)

EVALUATION_SYSTEM_PROMPT = (
	"You are an expert educator evaluating how well a student understands a concept "
	"using the Feynman Technique. Return a JSON evaluation only."
)

_WORD_RE = re.compile(r"[A-Za-z']+")
_LINKERS_RE = re.compile(
	r"\b(because|so|therefore|then|first|next|finally|however|which means|this means|for example|as a result)\b",
	re.IGNORECASE,
)
_STOPWORDS = {
	"the", "and", "that", "this", "with", "from", "have", "they", "their", "there", "which",
	"what", "when", "into", "about", "also", "been", "were", "will", "would", "could", "some",
	"than", "then", "them", "these", "those", "such", "just", "like", "very", "your",
}


class EvaluationClient(Protocol):
	async def evaluate(self, original_text: str, explanation: str) -> PerformanceMetrics:
		...


def _build_evaluation_prompt(original_text: str, explanation: str) -> str:
	return f"""
Original text:
{original_text}

Student's explanation:
{explanation}

Evaluate the explanation and return a JSON object exactly like this:
{{
  "accuracy": 0-100,
  "completeness": 0-100,
  "ownWords": 0-100,
  "logicalFlow": 0-100,
  "overallScore": 0-100,
  "category": "Well Understood" | "Almost There" | "Needs Attention",
  "feedback": "Short feedback about how to improve."
}}
""".strip()


class LLMEvaluationClient:
	def __init__(self, client_factory: Callable[[], LLMClient] = LLMClient, *, temperature: float = 0.3) -> None:
		self._client_factory = client_factory
		self._temperature = temperature

	async def evaluate(self, original_text: str, explanation: str) -> PerformanceMetrics:
		if not original_text.strip() or not explanation.strip():
			raise ServiceError("Missing input fields", service="evaluation")
		try:
			client = self._client_factory()
		except ValueError as e:
			raise ServiceError(str(e), service="evaluation") from e
		try:
			raw = await client.generate(
				_build_evaluation_prompt(original_text, explanation),
				system=EVALUATION_SYSTEM_PROMPT,
				temperature=self._temperature,
			)
		except Exception as e:
			logger.error("Evaluation request failed: %s", e)
			raise ServiceError("Failed to evaluate session", service="evaluation") from e
		finally:
			await client.aclose()

		try:
			return metrics_from_payload(extract_json_block(raw))
		except ValueError as e:
			logger.error("Unparseable evaluation payload: %s", e)
			raise ServiceError("Evaluation service returned an unusable payload", service="evaluation") from e


def _words(text: str) -> List[str]:
	return [w.lower() for w in _WORD_RE.findall(text or "")]


def _content_words(words: List[str]) -> List[str]:
	return [w for w in words if len(w) >= 4 and w not in _STOPWORDS]


def _ngrams(words: List[str], n: int) -> set:
	return {tuple(words[i:i + n]) for i in range(len(words) - n + 1)}


class MockEvaluationClient:
	"""Heuristic scorer standing in for the evaluation service.

	Deterministic for a given input so tests and offline demos are repeatable.
	Set ``fixed`` to always return the same metrics, or ``error`` to simulate an
	outage.
	"""

	def __init__(self, fixed: Optional[PerformanceMetrics] = None, error: Optional[str] = None) -> None:
		self.fixed = fixed
		self.error = error
		self.calls: List[tuple] = []

	async def evaluate(self, original_text: str, explanation: str) -> PerformanceMetrics:
		self.calls.append((original_text, explanation))
		if self.error:
			raise ServiceError(self.error, service="evaluation")
		if self.fixed is not None:
			return self.fixed.model_copy()
		return self.score(original_text, explanation)

	@staticmethod
	def score(original_text: str, explanation: str) -> PerformanceMetrics:
		words = _words(explanation)
		if not words:
			return build_metrics(0, 0, 0, 0, feedback="No explanation detected. Try to explain the main ideas aloud.")
		source_words = _words(original_text)
		source_terms = set(_content_words(source_words))
		used_terms = set(_content_words(words))

		# Accuracy: how much of what was said relates to the source vocabulary
		relevant = len(used_terms & source_terms) / len(used_terms) if used_terms else 0.0
		accuracy = 50 + 50 * relevant

		# Completeness: coverage of the source's key terms, softened for short sources
		coverage = len(used_terms & source_terms) / min(len(source_terms), 20) if source_terms else 0.0
		completeness = 40 + 60 * min(1.0, coverage)

		# Own words: penalise long verbatim runs copied from the source
		copied = _ngrams(words, 4) & _ngrams(source_words, 4)
		copy_ratio = len(copied) / max(1, len(words) - 3)
		own_words = 100 - 60 * min(1.0, copy_ratio * 2)

		sentences = [s for s in re.split(r"[.!?]+", explanation) if s.strip()]
		linkers = len(_LINKERS_RE.findall(explanation))
		logical_flow = 55 + min(25, 8 * linkers) + min(20, 5 * len(sentences))

		suggestions: List[str] = []
		if completeness < 70:
			suggestions.append("Cover more of the key ideas from the document.")
		if own_words < 70:
			suggestions.append("Rephrase in your own words instead of repeating the text.")
		if linkers < 1:
			suggestions.append("Use linking words (because, so, for example) to connect ideas.")
		feedback = " ".join(suggestions[:2]) or "Clear explanation in your own words."
		return build_metrics(accuracy, completeness, own_words, logical_flow, feedback=feedback)
