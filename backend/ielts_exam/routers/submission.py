from __future__ import annotations
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Form, Request
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from ..db import get_db
from ..errors import ValidationError
from ..schemas import (
	CreateSubmissionRequest,
	FeedbackReplyOut,
	FeedbackReplyRequest,
	FeedbackThreadOut,
	GradeRequest,
	SubmissionHistoryItem,
	SubmissionResponse,
)
from ..submissions import SubmissionAggregator


router = APIRouter(prefix="/submission", tags=["submission"])


def get_aggregator(db: Session = Depends(get_db)) -> SubmissionAggregator:
	return SubmissionAggregator(db)


@router.post("", response_model=SubmissionResponse)
async def create_submission(req: CreateSubmissionRequest, agg: SubmissionAggregator = Depends(get_aggregator)):
	"""Score and store a reading, listening or writing attempt."""
	return await agg.finalize(req)


@router.post("/speaking", response_model=SubmissionResponse)
async def create_speaking_submission(
	request: Request,
	user_id: int = Form(..., alias="userId"),
	exam_set_id: int = Form(..., alias="examSetId"),
	exam_course_id: Optional[int] = Form(None, alias="examCourseId"),
	time_spent: Optional[int] = Form(None, alias="timeSpent"),
	agg: SubmissionAggregator = Depends(get_aggregator),
):
	"""Multipart upload; each audio part is named by its question index ("0", "1", ...)."""
	form = await request.form()
	recordings: Dict[int, bytes] = {}
	for name, value in form.multi_items():
		if not isinstance(value, UploadFile):
			continue
		if not name.isdigit():
			raise ValidationError(f"audio field {name!r} is not a question index")
		recordings[int(name)] = await value.read()
	return agg.finalize_speaking(
		user_id,
		exam_set_id,
		recordings,
		exam_course_id=exam_course_id,
		time_spent=time_spent,
	)


@router.get("/feedback/{submission_id}", response_model=FeedbackThreadOut)
def get_feedback(submission_id: int, agg: SubmissionAggregator = Depends(get_aggregator)):
	return agg.get_feedback_thread(submission_id)


@router.post("/feedback/reply", response_model=FeedbackReplyOut)
def reply_to_feedback(req: FeedbackReplyRequest, agg: SubmissionAggregator = Depends(get_aggregator)):
	return agg.add_reply(req)


@router.get("/user/{user_id}/history", response_model=List[SubmissionHistoryItem])
def submission_history(user_id: int, agg: SubmissionAggregator = Depends(get_aggregator)):
	return agg.list_history(user_id)


@router.put("/{submission_id}/grade", response_model=SubmissionResponse)
def grade_submission(submission_id: int, req: GradeRequest, agg: SubmissionAggregator = Depends(get_aggregator)):
	"""Mentor grade. Automated scores on the submission are left as they were."""
	return agg.grade(submission_id, req)


@router.get("/{submission_id}", response_model=SubmissionResponse)
def get_submission(submission_id: int, agg: SubmissionAggregator = Depends(get_aggregator)):
	return agg.get_submission(submission_id)
