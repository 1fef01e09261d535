"""Error taxonomy shared by the session engine, the scorers and the API.

Every error carries the HTTP status the API answers with, so routers can let
them propagate and the handler registered in ``main`` renders ``{"detail": ...}``.
"""
from __future__ import annotations


class ExamError(Exception):
	status_code: int = 500

	def __init__(self, detail: str) -> None:
		super().__init__(detail)
		self.detail = detail


class ValidationError(ExamError):
	"""Request rejected before scoring; nothing is persisted."""
	status_code = 400


class NotFoundError(ExamError):
	status_code = 404


class ExternalServiceError(ExamError):
	"""AI endpoint failure, timeout or malformed payload."""
	status_code = 502


class PersistenceError(ExamError):
	status_code = 500


class CaptureUnavailable(ExamError):
	"""No audio device, or microphone permission denied."""
	status_code = 503


class RecordingConflict(ExamError):
	status_code = 409


class SessionStateError(ExamError):
	status_code = 409


class ConcurrencyGuardError(ExamError):
	"""A submit is already in flight for this session."""
	status_code = 409
