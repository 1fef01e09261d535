from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import httpx
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..errors import PersistenceError, ValidationError
from ..schemas import CreateSubmissionRequest, SubmittedAnswer
from ..scoring.subjective import SubjectiveScorer
from ..submissions import SubmissionAggregator


logger = logging.getLogger(__name__)


class ExamSnapshot(BaseModel):
	"""Everything a finished session hands over; built once, never modified."""
	model_config = ConfigDict(frozen=True)

	exam_set_id: int
	exam_type: str
	answers: Tuple[SubmittedAnswer, ...] = ()
	recordings: Dict[int, bytes] = {}
	time_spent: int = 0
	submitted_at: datetime
	reason: str = "submitted"


class ExamSubmitter(Protocol):
	async def submit(self, snapshot: ExamSnapshot) -> Any:
		...


def _submission_body(snapshot: ExamSnapshot, user_id: int, exam_course_id: Optional[int]) -> CreateSubmissionRequest:
	return CreateSubmissionRequest(
		user_id=user_id,
		exam_set_id=snapshot.exam_set_id,
		exam_course_id=exam_course_id,
		exam_type=snapshot.exam_type,
		answers=list(snapshot.answers),
		time_spent=snapshot.time_spent,
		submitted_at=snapshot.submitted_at,
	)


class HttpSubmitter:
	"""Posts a snapshot to the submission API.

	Reading/listening/writing go to ``POST /submission`` as JSON. Speaking goes
	to ``POST /submission/speaking`` as multipart, one file field per question
	index.
	"""

	def __init__(
		self,
		base_url: str,
		user_id: int,
		*,
		exam_course_id: Optional[int] = None,
		timeout: float = 60.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.base_url = base_url.rstrip("/")
		self.user_id = user_id
		self.exam_course_id = exam_course_id
		self.timeout = timeout
		self.transport = transport

	async def submit(self, snapshot: ExamSnapshot) -> Dict[str, Any]:
		async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
			try:
				if snapshot.exam_type == "speaking":
					resp = await client.post("/submission/speaking", data=self._speaking_fields(snapshot), files=self._speaking_files(snapshot))
				else:
					body = _submission_body(snapshot, self.user_id, self.exam_course_id)
					resp = await client.post("/submission", json=body.model_dump(mode="json", by_alias=True))
			except httpx.HTTPError as err:
				logger.error("Submission for exam set %s could not be sent: %s", snapshot.exam_set_id, err)
				raise PersistenceError(f"submission failed: {err}") from err
		if resp.status_code >= 400:
			detail = self._detail(resp)
			logger.error("Submission for exam set %s rejected (%s): %s", snapshot.exam_set_id, resp.status_code, detail)
			if resp.status_code in (400, 422):
				raise ValidationError(detail)
			raise PersistenceError(detail)
		return resp.json()

	def _speaking_fields(self, snapshot: ExamSnapshot) -> Dict[str, str]:
		fields = {
			"userId": str(self.user_id),
			"examSetId": str(snapshot.exam_set_id),
			"timeSpent": str(snapshot.time_spent),
		}
		if self.exam_course_id is not None:
			fields["examCourseId"] = str(self.exam_course_id)
		return fields

	@staticmethod
	def _speaking_files(snapshot: ExamSnapshot):
		return [
			(str(index), (f"question_{index}.webm", audio, "audio/webm"))
			for index, audio in sorted(snapshot.recordings.items())
		]

	@staticmethod
	def _detail(resp: httpx.Response) -> str:
		try:
			return str(resp.json().get("detail") or resp.text)
		except ValueError:
			return resp.text or f"HTTP {resp.status_code}"


class ServiceSubmitter:
	"""Submits in-process through the aggregator, using a fresh db session."""

	def __init__(
		self,
		session_factory: Callable[[], Session],
		user_id: int,
		*,
		exam_course_id: Optional[int] = None,
		scorer: Optional[SubjectiveScorer] = None,
	) -> None:
		self.session_factory = session_factory
		self.user_id = user_id
		self.exam_course_id = exam_course_id
		self.scorer = scorer

	async def submit(self, snapshot: ExamSnapshot):
		db = self.session_factory()
		try:
			aggregator = SubmissionAggregator(db, subjective=self.scorer)
			if snapshot.exam_type == "speaking":
				return aggregator.finalize_speaking(
					self.user_id,
					snapshot.exam_set_id,
					dict(snapshot.recordings),
					exam_course_id=self.exam_course_id,
					time_spent=snapshot.time_spent,
					submitted_at=snapshot.submitted_at,
				)
			return await aggregator.finalize(_submission_body(snapshot, self.user_id, self.exam_course_id))
		finally:
			db.close()
