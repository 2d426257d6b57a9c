"""Session and document persistence.

Both stores keep their whole collection as one JSON list under a fixed key of
the ``kv_store`` table and rewrite the list on every change. There is a single
writer (the application's event loop), so no locking is needed beyond the
per-key read-modify-write done inside one database transaction.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import SessionLocal
from .errors import StorageError
from .models import KeyValueEntry
from .schemas import StudySession, UploadedDocument

logger = logging.getLogger(__name__)

SESSIONS_KEY = "feyn_brain_sessions"
DOCUMENTS_KEY = "feyn_brain_documents"

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
	return int(time.time() * 1000)


class KeyValueStore:
	def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
		self._session_factory = session_factory

	def read_list(self, key: str) -> List[Dict[str, Any]]:
		"""Return the list stored under ``key``; missing or corrupt data reads as empty."""
		try:
			with self._session_factory() as db:
				row = db.get(KeyValueEntry, key)
				raw = row.value if row is not None else None
		except SQLAlchemyError as e:
			raise StorageError(f"Failed to read {key}") from e
		if not raw:
			return []
		try:
			data = json.loads(raw)
		except ValueError:
			logger.warning("Ignoring corrupt JSON stored under %s", key)
			return []
		return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

	def update_list(self, key: str, mutate: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
		"""Read the list, apply ``mutate`` and write the result back in one transaction."""
		db: Session = self._session_factory()
		try:
			row = db.get(KeyValueEntry, key)
			current: List[Dict[str, Any]] = []
			if row is not None and row.value:
				try:
					loaded = json.loads(row.value)
					if isinstance(loaded, list):
						current = [item for item in loaded if isinstance(item, dict)]
				except ValueError:
					logger.warning("Overwriting corrupt JSON stored under %s", key)
			updated = mutate(current)
			payload = json.dumps(updated)
			if row is None:
				db.add(KeyValueEntry(key=key, value=payload))
			else:
				row.value = payload
			db.commit()
			return updated
		except SQLAlchemyError as e:
			db.rollback()
			raise StorageError(f"Failed to write {key}") from e
		finally:
			db.close()


def _parse_sessions(items: List[Dict[str, Any]]) -> List[StudySession]:
	sessions: List[StudySession] = []
	for item in items:
		try:
			sessions.append(StudySession.model_validate(item))
		except PydanticValidationError:
			logger.warning("Skipping malformed stored session %r", item.get("sessionID"))
	return sessions


class SessionStore:
	def __init__(self, kv: Optional[KeyValueStore] = None) -> None:
		self.kv = kv or KeyValueStore()

	def save(self, session: StudySession) -> None:
		"""Upsert by ``sessionID``: replace in place if present, append otherwise."""
		record = session.model_dump(by_alias=True, mode="json")

		def _upsert(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
			for index, item in enumerate(items):
				if item.get("sessionID") == session.session_id:
					items[index] = record
					return items
			items.append(record)
			return items

		self.kv.update_list(SESSIONS_KEY, _upsert)

	def list(self) -> List[StudySession]:
		return _parse_sessions(self.kv.read_list(SESSIONS_KEY))

	def get(self, session_id: str) -> Optional[StudySession]:
		for session in self.list():
			if session.session_id == session_id:
				return session
		return None

	def delete(self, session_id: str) -> bool:
		removed = []

		def _remove(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
			kept = [item for item in items if item.get("sessionID") != session_id]
			removed.append(len(items) - len(kept))
			return kept

		self.kv.update_list(SESSIONS_KEY, _remove)
		return bool(removed and removed[0])

	def cleanup_expired(self, max_age_ms: int, now: Optional[int] = None) -> int:
		"""Drop sessions whose timestamp is older than ``max_age_ms``; returns how many."""
		threshold = (now_ms() if now is None else now) - max_age_ms
		removed = []

		def _purge(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
			kept = [item for item in items if _timestamp(item) > threshold]
			removed.append(len(items) - len(kept))
			return kept

		self.kv.update_list(SESSIONS_KEY, _purge)
		return removed[0] if removed else 0

	def export(self, documents: Optional["DocumentStore"] = None) -> Dict[str, Any]:
		return {
			"sessions": [s.model_dump(by_alias=True, mode="json") for s in self.list()],
			"documents": [d.model_dump(by_alias=True, mode="json") for d in documents.list()] if documents else [],
			"exportedAt": datetime.now(timezone.utc).isoformat(),
		}


def _timestamp(item: Dict[str, Any]) -> float:
	try:
		return float(item.get("timestamp", 0))
	except (TypeError, ValueError):
		return 0.0


class DocumentStore:
	def __init__(self, kv: Optional[KeyValueStore] = None) -> None:
		self.kv = kv or KeyValueStore()

	def save(self, document: UploadedDocument) -> None:
		record = document.model_dump(by_alias=True, mode="json")
		self.kv.update_list(DOCUMENTS_KEY, lambda items: items + [record])

	def list(self) -> List[UploadedDocument]:
		documents: List[UploadedDocument] = []
		for item in self.kv.read_list(DOCUMENTS_KEY):
			try:
				documents.append(UploadedDocument.model_validate(item))
			except PydanticValidationError:
				logger.warning("Skipping malformed stored document %r", item.get("id"))
		return documents

	def get(self, document_id: str) -> Optional[UploadedDocument]:
		for document in self.list():
			if document.id == document_id:
				return document
		return None

	def delete(self, document_id: str) -> bool:
		removed = []

		def _remove(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
			kept = [item for item in items if item.get("id") != document_id]
			removed.append(len(items) - len(kept))
			return kept

		self.kv.update_list(DOCUMENTS_KEY, _remove)
		return bool(removed and removed[0])
