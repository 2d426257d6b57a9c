"""
Document Upload Router

Accepts study material (.txt, .docx, .pdf), extracts its text once and keeps
the resulting document in the document store. Study sessions are started from
a stored document id.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from ..deps import get_document_store
from ..documents import format_file_size, process_upload
from ..errors import NotFoundError
from ..schemas import UploadedDocument
from ..store import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _summary(document: UploadedDocument) -> dict:
	return {
		"id": document.id,
		"name": document.name,
		"size": document.size,
		"sizeLabel": format_file_size(document.size),
		"type": document.type,
		"uploadedAt": document.uploaded_at,
	}


@router.post("", status_code=201)
async def upload(file: UploadFile = File(...), store: DocumentStore = Depends(get_document_store)):
	data = await file.read()
	document = process_upload(file.filename or "", data, file.content_type)
	store.save(document)
	logger.info("Stored document %s (%s, %s)", document.id, document.name, format_file_size(document.size))
	return document.model_dump(by_alias=True)


@router.get("")
def list_documents(store: DocumentStore = Depends(get_document_store)):
	return {"documents": [_summary(d) for d in store.list()]}


@router.get("/{document_id}")
def get_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
	document = store.get(document_id)
	if document is None:
		raise NotFoundError("Document not found")
	return document.model_dump(by_alias=True)


@router.delete("/{document_id}")
def delete_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
	if not store.delete(document_id):
		raise NotFoundError("Document not found")
	return {"deleted": document_id}
