from __future__ import annotations
import logging
from typing import Optional

from .errors import StorageError
from .settings import settings
from .store import DAY_MS, SessionStore

logger = logging.getLogger(__name__)


def purge_expired_sessions(store: SessionStore, max_age_days: Optional[int] = None, now: Optional[int] = None) -> int:
	# Drop finished sessions older than the retention window (30 days by default)
	days = settings.session_max_age_days if max_age_days is None else max_age_days
	try:
		removed = store.cleanup_expired(days * DAY_MS, now=now)
	except StorageError:
		logger.exception("Failed to cleanup old sessions")
		return 0
	if removed:
		logger.info("Purged %d session(s) older than %d days", removed, days)
	return removed
