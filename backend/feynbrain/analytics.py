from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .metrics import round_half_up
from .schemas import Category, StudySession
from .store import DAY_MS, now_ms

TIME_RANGES = {"7": 7, "30": 30, "90": 90}
SORT_KEYS = ("date", "score", "title")


def _cutoff(time_range: Optional[str], now: int) -> int:
	days = TIME_RANGES.get(time_range or "all")
	return now - days * DAY_MS if days else 0


def filter_sessions(
	sessions: List[StudySession],
	*,
	query: Optional[str] = None,
	category: Optional[str] = None,
	time_range: Optional[str] = None,
	now: Optional[int] = None,
) -> List[StudySession]:
	now = now_ms() if now is None else now
	cutoff = _cutoff(time_range, now)
	needle = (query or "").strip().lower()
	result = []
	for s in sessions:
		if s.timestamp < cutoff:
			continue
		if category and category != "all" and s.performance_metrics.category.value != category:
			continue
		if needle and needle not in s.document_title.lower() and needle not in s.user_explanation.lower():
			continue
		result.append(s)
	return result


def sort_sessions(sessions: List[StudySession], sort_by: str = "date", order: str = "desc") -> List[StudySession]:
	if sort_by == "score":
		key = lambda s: s.performance_metrics.overall_score
	elif sort_by == "title":
		key = lambda s: s.document_title.lower()
	else:
		key = lambda s: s.timestamp
	return sorted(sessions, key=key, reverse=(order == "desc"))


def _average(values: List[float]) -> float:
	return sum(values) / len(values) if values else 0.0


def compute_stats(sessions: List[StudySession]) -> Dict[str, int]:
	if not sessions:
		return {
			"totalSessions": 0,
			"averageScore": 0,
			"wellUnderstood": 0,
			"needsAttention": 0,
			"improvementTrend": 0,
		}
	scores = [s.performance_metrics.overall_score for s in sessions]
	ordered = sorted(sessions, key=lambda s: s.timestamp)
	trend = 0
	# Last five against first five, once there is enough history
	if len(ordered) >= 5:
		first = _average([s.performance_metrics.overall_score for s in ordered[:5]])
		last = _average([s.performance_metrics.overall_score for s in ordered[-5:]])
		trend = round_half_up(last - first)
	return {
		"totalSessions": len(sessions),
		"averageScore": round_half_up(_average(scores)),
		"wellUnderstood": sum(1 for s in sessions if s.performance_metrics.category == Category.WELL_UNDERSTOOD),
		"needsAttention": sum(1 for s in sessions if s.performance_metrics.category == Category.NEEDS_ATTENTION),
		"improvementTrend": trend,
	}


def build_dashboard(
	sessions: List[StudySession],
	*,
	category: Optional[str] = None,
	time_range: Optional[str] = None,
	now: Optional[int] = None,
) -> Dict[str, Any]:
	filtered = filter_sessions(sessions, category=category, time_range=time_range, now=now)
	recent = sort_sessions(filtered, "date", "desc")[:10]
	return {
		"stats": compute_stats(filtered),
		"recentSessions": [s.model_dump(by_alias=True, mode="json") for s in recent],
		"filters": {"timeRange": time_range or "all", "category": category or "all"},
		"exportedAt": datetime.now(timezone.utc).isoformat(),
	}
