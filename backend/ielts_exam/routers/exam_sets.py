from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..answer_keys import AnswerKeyStore
from ..db import get_db
from ..schemas import ExamSetOut


router = APIRouter(prefix="/exam-set", tags=["exam-set"])


@router.get("/{exam_set_id}", response_model=ExamSetOut)
def get_exam_set(exam_set_id: int, db: Session = Depends(get_db)):
	"""Exam set with its ordered questions. Answer keys are never sent."""
	store = AnswerKeyStore(db)
	exam_set = store.get_exam_set(exam_set_id)
	return ExamSetOut(
		exam_set_id=exam_set.id,
		title=exam_set.title,
		exam_type=exam_set.exam_type,
		description=exam_set.description,
		duration_seconds=exam_set.duration_seconds,
		questions=store.question_views(exam_set.id),
	)
