"""Upload validation and text extraction for study documents."""

from __future__ import annotations

import io
import logging
import uuid
from typing import Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from .errors import ValidationError
from .schemas import UploadedDocument
from .settings import settings
from .store import now_ms

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = (".txt", ".docx", ".pdf")
MIN_TEXT_LENGTH = 10


def get_file_extension(filename: str) -> str:
	return "." + (filename or "").rsplit(".", 1)[-1].lower()


def format_file_size(size: int) -> str:
	if size <= 0:
		return "0 Bytes"
	units = ["Bytes", "KB", "MB", "GB"]
	i = 0
	while i < len(units) - 1 and size >= 1024 ** (i + 1):
		i += 1
	value = round(size / (1024 ** i), 2)
	return f"{value:g} {units[i]}"


def validate_file(filename: str, size: int, max_size: Optional[int] = None) -> None:
	max_size = max_size or settings.max_upload_bytes
	if size > max_size:
		raise ValidationError(
			f"File {filename} is too large. Maximum size is {round(max_size / (1024 * 1024))}MB."
		)
	extension = get_file_extension(filename)
	if extension not in ACCEPTED_EXTENSIONS:
		raise ValidationError(
			f"File type {extension} is not supported. Please upload PDF, DOCX, or TXT files."
		)


def _read_text(data: bytes) -> str:
	try:
		return data.decode("utf-8-sig")
	except UnicodeDecodeError as e:
		raise ValidationError("Error reading file: text files must be UTF-8 encoded.") from e


def _read_docx(data: bytes) -> str:
	try:
		doc = DocxDocument(io.BytesIO(data))
	except Exception as e:
		logger.error("DOCX parsing error: %s", e)
		raise ValidationError("Failed to parse DOCX file. Please ensure it contains readable text.") from e
	return "\n".join(p.text for p in doc.paragraphs)


def _read_pdf(data: bytes) -> str:
	try:
		with fitz.open(stream=data, filetype="pdf") as pdf:
			return "\n".join(page.get_text() for page in pdf)
	except Exception as e:
		logger.error("PDF parsing error: %s", e)
		raise ValidationError("Failed to parse PDF file. Please ensure it contains readable text.") from e


def extract_text(filename: str, data: bytes) -> str:
	extension = get_file_extension(filename)
	if extension == ".txt":
		text = _read_text(data)
	elif extension == ".docx":
		text = _read_docx(data)
	elif extension == ".pdf":
		text = _read_pdf(data)
	else:
		raise ValidationError(f"Unsupported file type: {extension}")
	if not text or len(text.strip()) < MIN_TEXT_LENGTH:
		raise ValidationError("No readable text found in the file. Please ensure the file contains text content.")
	return text


def process_upload(filename: str, data: bytes, content_type: Optional[str] = None) -> UploadedDocument:
	"""Validate an upload and extract its text once, producing an immutable document."""
	filename = (filename or "").strip()
	if not filename:
		raise ValidationError("Uploaded file has no name.")
	validate_file(filename, len(data))
	text = extract_text(filename, data)
	return UploadedDocument(
		id=uuid.uuid4().hex,
		name=filename,
		size=len(data),
		type=content_type or "",
		content=text,
		uploaded_at=now_ms(),
	)
