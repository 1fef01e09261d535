from __future__ import annotations
from typing import List

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import ExamQuestion, ExamSet
from .schemas import QuestionOut


class AnswerKey(BaseModel):
	model_config = ConfigDict(frozen=True)

	question_id: int
	correct_answer: str


class AnswerKeyStore:
	"""Read-only access to exam sets and their answer keys.

	Re-reads the store on every call; nothing is cached between requests.
	"""

	def __init__(self, db: Session) -> None:
		self.db = db

	def get_exam_set(self, exam_set_id: int) -> ExamSet:
		exam_set = self.db.get(ExamSet, exam_set_id)
		if exam_set is None:
			raise NotFoundError(f"exam set {exam_set_id} not found")
		return exam_set

	def questions(self, exam_set_id: int) -> List[ExamQuestion]:
		stmt = (
			select(ExamQuestion)
			.where(ExamQuestion.exam_set_id == exam_set_id)
			.order_by(ExamQuestion.part_number, ExamQuestion.position, ExamQuestion.id)
		)
		return list(self.db.execute(stmt).scalars().all())

	def question_views(self, exam_set_id: int) -> List[QuestionOut]:
		"""Ordered questions with the answer keys left out."""
		return [
			QuestionOut(
				question_id=q.id,
				position=q.position,
				part_number=q.part_number,
				part_title=q.part_title,
				question_text=q.question_text,
				time_limit_seconds=q.time_limit_seconds,
			)
			for q in self.questions(exam_set_id)
		]

	def answer_keys(self, exam_set_id: int) -> List[AnswerKey]:
		# A question stored without a key still counts; an empty key never matches
		return [
			AnswerKey(question_id=q.id, correct_answer=q.correct_answer or "")
			for q in self.questions(exam_set_id)
		]
