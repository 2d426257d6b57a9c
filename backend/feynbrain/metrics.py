from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from .schemas import Category, PerformanceMetrics

SUB_SCORES = ("accuracy", "completeness", "ownWords", "logicalFlow")


def round_half_up(value: float) -> int:
	# Python's round() is banker's rounding; scores round .5 upwards
	return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
	return max(0, min(100, round_half_up(float(value))))


def categorize(overall_score: int) -> Category:
	if overall_score >= 80:
		return Category.WELL_UNDERSTOOD
	if overall_score >= 60:
		return Category.ALMOST_THERE
	return Category.NEEDS_ATTENTION


def build_metrics(
	accuracy: float,
	completeness: float,
	own_words: float,
	logical_flow: float,
	*,
	feedback: Optional[str] = None,
) -> PerformanceMetrics:
	"""Compute the overall score and category from the four sub-scores.

	The whole struct is rebuilt on every call; callers never patch
	``overall_score`` or ``category`` on an existing instance.
	"""
	scores = [clamp_score(s) for s in (accuracy, completeness, own_words, logical_flow)]
	overall = round_half_up(sum(scores) / len(scores))
	return PerformanceMetrics(
		accuracy=scores[0],
		completeness=scores[1],
		own_words=scores[2],
		logical_flow=scores[3],
		overall_score=overall,
		category=categorize(overall),
		feedback=feedback,
	)


def metrics_from_payload(data: Mapping[str, Any]) -> PerformanceMetrics:
	"""Parse a service payload into metrics.

	Any ``overallScore`` / ``category`` in the payload is ignored and derived
	again locally. Raises ``ValueError`` when a sub-score is missing or not
	numeric.
	"""
	values = []
	for key in SUB_SCORES:
		raw = data.get(key)
		if isinstance(raw, bool) or raw is None:
			raise ValueError(f"missing numeric field {key!r}")
		try:
			number = float(raw)
		except (TypeError, ValueError):
			raise ValueError(f"field {key!r} is not numeric: {raw!r}")
		if not math.isfinite(number):
			raise ValueError(f"field {key!r} is not numeric: {raw!r}")
		values.append(number)
	feedback = data.get("feedback")
	if not isinstance(feedback, str) or not feedback.strip():
		feedback = None
	return build_metrics(*values, feedback=feedback.strip() if feedback else None)
