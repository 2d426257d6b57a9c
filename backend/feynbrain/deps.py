from fastapi import Request

from .registry import SessionRegistry
from .store import DocumentStore, SessionStore


# Shared objects live on app.state so tests can swap them before the first request

def get_session_store(request: Request) -> SessionStore:
	return request.app.state.session_store


def get_document_store(request: Request) -> DocumentStore:
	return request.app.state.document_store


def get_registry(request: Request) -> SessionRegistry:
	return request.app.state.registry
