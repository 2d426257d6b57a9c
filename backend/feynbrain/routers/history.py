from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..analytics import build_dashboard, filter_sessions, sort_sessions
from ..deps import get_document_store, get_session_store
from ..errors import NotFoundError
from ..store import DocumentStore, SessionStore, now_ms

router = APIRouter(tags=["history"])

TimeRange = Literal["7", "30", "90", "all"]


def _download(payload: dict, filename: str) -> JSONResponse:
	return JSONResponse(payload, headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.get("/history")
def list_history(
	query: Optional[str] = None,
	category: Optional[str] = None,
	time_range: TimeRange = "all",
	sort_by: Literal["date", "score", "title"] = "date",
	order: Literal["asc", "desc"] = "desc",
	store: SessionStore = Depends(get_session_store),
):
	sessions = filter_sessions(store.list(), query=query, category=category, time_range=time_range)
	sessions = sort_sessions(sessions, sort_by, order)
	return {
		"total": len(sessions),
		"sessions": [s.model_dump(by_alias=True, mode="json") for s in sessions],
	}


@router.get("/history/export")
def export_all(
	sessions: SessionStore = Depends(get_session_store),
	documents: DocumentStore = Depends(get_document_store),
):
	return _download(sessions.export(documents), f"feyn-brain-export-{now_ms()}.json")


@router.get("/history/{session_id}")
def get_history_session(session_id: str, store: SessionStore = Depends(get_session_store)):
	session = store.get(session_id)
	if session is None:
		raise NotFoundError("Session not found")
	return session.model_dump(by_alias=True, mode="json")


@router.get("/history/{session_id}/export")
def export_session(session_id: str, store: SessionStore = Depends(get_session_store)):
	session = store.get(session_id)
	if session is None:
		raise NotFoundError("Session not found")
	return _download(session.model_dump(by_alias=True, mode="json"), f"feyn-brain-session-{session.session_id}.json")


@router.delete("/history/{session_id}")
def delete_history_session(session_id: str, store: SessionStore = Depends(get_session_store)):
	if not store.delete(session_id):
		raise NotFoundError("Session not found")
	return {"deleted": session_id}


@router.get("/analytics")
def analytics(
	category: Optional[str] = None,
	time_range: TimeRange = Query("all"),
	store: SessionStore = Depends(get_session_store),
):
	return build_dashboard(store.list(), category=category, time_range=time_range)
