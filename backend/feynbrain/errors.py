"""Error taxonomy shared by the study components and the HTTP layer."""

from __future__ import annotations


class FeynBrainError(Exception):
	"""Base class for all application errors."""

	status_code: int = 500

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message


class CaptureConflictError(FeynBrainError):
	"""A capture was requested while another one is still active."""

	status_code = 409


class ServiceError(FeynBrainError):
	"""An AI service call failed, timed out or returned unusable data."""

	status_code = 502

	def __init__(self, message: str, *, service: str = "") -> None:
		super().__init__(message)
		self.service = service


class ValidationError(FeynBrainError):
	"""Uploaded content was rejected before a session could be created."""

	status_code = 400


class StorageError(FeynBrainError):
	"""Reading or writing the local store failed."""

	status_code = 500


class PhaseError(FeynBrainError):
	"""The action is not allowed in the session's current phase or while it is busy."""

	status_code = 409


class NotFoundError(FeynBrainError):
	status_code = 404
