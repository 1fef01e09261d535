"""Service layer for submissions: scoring on create, mentor grading, feedback threads."""
from __future__ import annotations

import json
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .answer_keys import AnswerKeyStore
from .errors import NotFoundError, PersistenceError, ValidationError
from .models import (
	EXAM_TYPES,
	OBJECTIVE_EXAM_TYPES,
	ROLE_MENTOR,
	ROLE_STUDENT,
	STATUS_PENDING,
	SUBMISSION_STATUSES,
	ExamQuestion,
	ExamSet,
	Feedback,
	FeedbackReply,
	Submission,
	as_stored_utc,
	utcnow,
)
from .schemas import (
	CreateSubmissionRequest,
	CriterionScore,
	FeedbackReplyOut,
	FeedbackReplyRequest,
	FeedbackThreadOut,
	GradeRequest,
	ObjectiveScoreResult,
	SubmissionHistoryItem,
	SubmissionResponse,
	SubmittedAnswer,
	WritingScore,
)
from .scoring.objective import ObjectiveScorer
from .scoring.subjective import SubjectiveScorer
from .settings import settings


logger = logging.getLogger(__name__)


def count_words(text: Optional[str]) -> int:
	return len((text or "").split())


def _float(value) -> Optional[float]:
	return float(value) if value is not None else None


def _normalize_status(status: str) -> str:
	for known in SUBMISSION_STATUSES:
		if (status or "").strip().lower() == known.lower():
			return known
	raise ValidationError(f"status must be one of {list(SUBMISSION_STATUSES)}")


class SubmissionAggregator:
	def __init__(
		self,
		db: Session,
		*,
		keys: Optional[AnswerKeyStore] = None,
		objective: Optional[ObjectiveScorer] = None,
		subjective: Optional[SubjectiveScorer] = None,
		audio_dir: Optional[str | Path] = None,
	) -> None:
		self.db = db
		self.keys = keys or AnswerKeyStore(db)
		self.objective = objective or ObjectiveScorer()
		self.subjective = subjective or SubjectiveScorer()
		self.audio_dir = Path(audio_dir or settings.audio_dir)

	# ============================================================================
	# CREATE
	# ============================================================================

	async def finalize(self, req: CreateSubmissionRequest) -> SubmissionResponse:
		"""Validate, score and persist a reading, listening or writing attempt."""
		exam_set = self.keys.get_exam_set(req.exam_set_id)
		exam_type = self._resolve_exam_type(req.exam_type, exam_set)
		if exam_type == "speaking":
			raise ValidationError("speaking attempts are submitted as audio to /submission/speaking")
		self._validate_answers(req.answers)
		questions = self.keys.questions(exam_set.id)

		row = Submission(
			user_id=req.user_id,
			exam_set_id=exam_set.id,
			exam_course_id=req.exam_course_id,
			exam_type=exam_type,
			answers=json.dumps([a.model_dump(by_alias=True) for a in req.answers]),
			time_spent=req.time_spent,
			submitted_at=as_stored_utc(req.submitted_at) or utcnow(),
			status=STATUS_PENDING,
		)

		objective_result: Optional[ObjectiveScoreResult] = None
		writing_result: Optional[WritingScore] = None
		if exam_type in OBJECTIVE_EXAM_TYPES:
			objective_result = self.objective.score(
				req.answers,
				self.keys.answer_keys(exam_set.id),
				total_questions=len(questions),
			)
			row.score = objective_result.score
			row.correct_answers = objective_result.correct_answers
			row.total_questions = objective_result.total_questions
		else:
			task_prompt, response_text, task_type = self._writing_task(questions, req.answers)
			row.total_word_count = sum(count_words(a.user_answer()) for a in req.answers)
			writing_result = await self.subjective.score(task_prompt, response_text, task_type)
			self._apply_writing(row, writing_result)

		self._persist(row)
		logger.info(
			"Submission %s created: user=%s exam_set=%s type=%s",
			row.id, row.user_id, row.exam_set_id, row.exam_type,
		)
		response = self._to_response(row)
		if objective_result is not None:
			response.question_results = objective_result.question_results
		if writing_result is not None:
			response.scoring_status = writing_result.kind
		return response

	def finalize_speaking(
		self,
		user_id: int,
		exam_set_id: int,
		recordings: Dict[int, bytes],
		*,
		exam_course_id: Optional[int] = None,
		time_spent: Optional[int] = None,
		submitted_at: Optional[datetime] = None,
		extension: str = "webm",
	) -> SubmissionResponse:
		"""Store one audio file per question index and persist a Pending submission.

		All-or-nothing: if the row cannot be written the audio files are removed.
		"""
		exam_set = self.keys.get_exam_set(exam_set_id)
		if exam_set.exam_type != "speaking":
			raise ValidationError(f"exam set {exam_set_id} is a {exam_set.exam_type} exam, not speaking")
		if not recordings:
			raise ValidationError("at least one recording is required")
		question_count = len(self.keys.questions(exam_set.id))
		bad = [i for i in recordings if not 0 <= i < question_count]
		if bad:
			raise ValidationError(f"recording index out of range 0..{question_count - 1}: {sorted(bad)}")

		folder = uuid.uuid4().hex
		target = self.audio_dir / folder
		stored: Dict[int, str] = {}
		try:
			target.mkdir(parents=True, exist_ok=False)
			for index in sorted(recordings):
				name = f"question_{index}.{extension}"
				(target / name).write_bytes(recordings[index])
				stored[index] = f"{folder}/{name}"
		except OSError as err:
			shutil.rmtree(target, ignore_errors=True)
			logger.error("Could not store speaking audio: %s", err)
			raise PersistenceError(f"could not store audio: {err}") from err

		row = Submission(
			user_id=user_id,
			exam_set_id=exam_set.id,
			exam_course_id=exam_course_id,
			exam_type="speaking",
			audio_files=json.dumps({str(i): p for i, p in stored.items()}),
			time_spent=time_spent,
			submitted_at=as_stored_utc(submitted_at) or utcnow(),
			status=STATUS_PENDING,
		)
		try:
			self._persist(row)
		except PersistenceError:
			shutil.rmtree(target, ignore_errors=True)
			raise
		logger.info("Speaking submission %s created with %d recordings", row.id, len(stored))
		return self._to_response(row)

	# ============================================================================
	# MENTOR GRADING & FEEDBACK
	# ============================================================================

	def grade(self, submission_id: int, req: GradeRequest) -> SubmissionResponse:
		row = self._get_row(submission_id)
		status = _normalize_status(req.status)
		# Only the mentor column and status change; automated scores stay as scored
		row.mentor_score = req.mentor_score
		row.status = status
		feedback = self._find_feedback(submission_id)
		content = (req.feedback_content or "").strip()
		if feedback is None and content:
			feedback = Feedback(submission_id=submission_id, mentor_id=req.mentor_id, feedback_text=content)
			self.db.add(feedback)
		elif feedback is not None and content:
			feedback.feedback_text = content
		self._persist(row)
		logger.info("Submission %s graded by mentor %s: %s", submission_id, req.mentor_id, req.mentor_score)
		return self._to_response(row)

	def create_feedback(self, submission_id: int, mentor_id: int, text: str) -> Feedback:
		"""Create the thread root once; later calls return the existing root."""
		self._get_row(submission_id)
		existing = self._find_feedback(submission_id)
		if existing is not None:
			return existing
		feedback = Feedback(submission_id=submission_id, mentor_id=mentor_id, feedback_text=text)
		self.db.add(feedback)
		try:
			self.db.commit()
		except IntegrityError:
			# Lost a race against another create; the unique constraint kept one row
			self.db.rollback()
			existing = self._find_feedback(submission_id)
			if existing is None:
				raise PersistenceError("could not create feedback")
			return existing
		except SQLAlchemyError as err:
			self.db.rollback()
			raise PersistenceError(f"could not create feedback: {err}") from err
		self.db.refresh(feedback)
		return feedback

	def add_reply(self, req: FeedbackReplyRequest) -> FeedbackReplyOut:
		feedback = self.db.get(Feedback, req.feedback_id)
		if feedback is None:
			raise NotFoundError(f"feedback {req.feedback_id} not found")
		text = (req.reply_text or "").strip()
		if not text:
			raise ValidationError("replyText is required")
		role = ROLE_MENTOR if req.user_id == feedback.mentor_id else ROLE_STUDENT
		reply = FeedbackReply(
			feedback_id=feedback.id,
			user_id=req.user_id,
			author_role=role,
			reply_text=text,
			created_at=utcnow(),
		)
		self._persist(reply)
		return self._reply_out(reply)

	def get_feedback_thread(self, submission_id: int) -> FeedbackThreadOut:
		feedback = self._find_feedback(submission_id)
		if feedback is None:
			raise NotFoundError(f"no feedback for submission {submission_id}")
		replies = self.db.execute(
			select(FeedbackReply)
			.where(FeedbackReply.feedback_id == feedback.id)
			.order_by(FeedbackReply.created_at, FeedbackReply.id)
		).scalars().all()
		return FeedbackThreadOut(
			feedback_id=feedback.id,
			submission_id=feedback.submission_id,
			mentor_id=feedback.mentor_id,
			feedback_text=feedback.feedback_text,
			created_at=feedback.created_at,
			replies=[self._reply_out(r) for r in replies],
		)

	# ============================================================================
	# READ
	# ============================================================================

	def get_submission(self, submission_id: int) -> SubmissionResponse:
		return self._to_response(self._get_row(submission_id))

	def list_history(self, user_id: int) -> List[SubmissionHistoryItem]:
		rows = self.db.execute(
			select(Submission, ExamSet.title)
			.outerjoin(ExamSet, ExamSet.id == Submission.exam_set_id)
			.where(Submission.user_id == user_id)
			.order_by(Submission.created_at.desc(), Submission.id.desc())
		).all()
		reply_counts = dict(
			self.db.execute(
				select(Feedback.submission_id, func.count(FeedbackReply.id))
				.join(FeedbackReply, FeedbackReply.feedback_id == Feedback.id)
				.where(Feedback.submission_id.in_([s.id for s, _ in rows] or [-1]))
				.group_by(Feedback.submission_id)
			).all()
		)
		return [
			SubmissionHistoryItem(
				submission_id=s.id,
				exam_set_id=s.exam_set_id,
				exam_type=s.exam_type,
				exam_title=title or f"{s.exam_type.capitalize()} Exam",
				status=s.status,
				score=_float(s.score),
				ai_score=_float(s.ai_score),
				mentor_score=_float(s.mentor_score),
				time_spent=s.time_spent,
				submitted_at=s.submitted_at,
				reply_count=reply_counts.get(s.id, 0),
			)
			for s, title in rows
		]

	# ============================================================================
	# INTERNALS
	# ============================================================================

	def _resolve_exam_type(self, requested: Optional[str], exam_set: ExamSet) -> str:
		stored = (exam_set.exam_type or "").lower()
		if requested is None:
			exam_type = stored
		else:
			exam_type = requested.strip().lower()
			if exam_type not in EXAM_TYPES:
				raise ValidationError(f"unknown exam type {requested!r}")
			if exam_type != stored:
				raise ValidationError(f"exam set {exam_set.id} is a {stored} exam, not {exam_type}")
		if exam_type not in EXAM_TYPES:
			raise ValidationError(f"unknown exam type {exam_type!r}")
		return exam_type

	def _validate_answers(self, answers: Sequence[SubmittedAnswer]) -> None:
		seen = set()
		for answer in answers:
			if answer.selected_answer is None and answer.fill_answer is None:
				raise ValidationError(f"answer for question {answer.question_id} needs selectedAnswer or fillAnswer")
			if answer.question_id in seen:
				raise ValidationError(f"question {answer.question_id} answered more than once")
			seen.add(answer.question_id)

	def _writing_task(self, questions: Sequence[ExamQuestion], answers: Sequence[SubmittedAnswer]):
		"""Combine the writing tasks of the set into one prompt/response pair."""
		by_id = {a.question_id: a.user_answer() for a in answers}
		answered = [q for q in questions if by_id.get(q.id, "").strip()]
		if not answered:
			return "", "", "Academic"
		if len(answered) == 1:
			q = answered[0]
			return q.question_text, by_id[q.id].strip(), q.part_title or "Academic"
		prompts = []
		responses = []
		for n, q in enumerate(answered, start=1):
			label = q.part_title or f"Task {n}"
			prompts.append(f"{label}:\n{q.question_text}")
			responses.append(f"{label}:\n{by_id[q.id].strip()}")
		return "\n\n".join(prompts), "\n\n".join(responses), "Academic"

	def _apply_writing(self, row: Submission, result: WritingScore) -> None:
		row.ai_score = result.overall_band
		row.ai_task_achievement_score = result.task_achievement.score
		row.ai_task_achievement_feedback = result.task_achievement.feedback
		row.ai_coherence_cohesion_score = result.coherence_cohesion.score
		row.ai_coherence_cohesion_feedback = result.coherence_cohesion.feedback
		row.ai_lexical_resource_score = result.lexical_resource.score
		row.ai_lexical_resource_feedback = result.lexical_resource.feedback
		row.ai_grammatical_range_score = result.grammatical_range.score
		row.ai_grammatical_range_feedback = result.grammatical_range.feedback
		row.ai_general_feedback = result.general_feedback
		row.needs_manual_review = result.kind == "fallback"

	def _persist(self, row) -> None:
		self.db.add(row)
		try:
			self.db.commit()
		except SQLAlchemyError as err:
			self.db.rollback()
			logger.error("Store write failed: %s", err)
			raise PersistenceError("could not save to the store") from err
		self.db.refresh(row)

	def _get_row(self, submission_id: int) -> Submission:
		row = self.db.get(Submission, submission_id)
		if row is None:
			raise NotFoundError(f"submission {submission_id} not found")
		return row

	def _find_feedback(self, submission_id: int) -> Optional[Feedback]:
		return self.db.execute(
			select(Feedback).where(Feedback.submission_id == submission_id)
		).scalar_one_or_none()

	@staticmethod
	def _reply_out(reply: FeedbackReply) -> FeedbackReplyOut:
		return FeedbackReplyOut(
			reply_id=reply.id,
			feedback_id=reply.feedback_id,
			user_id=reply.user_id,
			author_role=reply.author_role,
			reply_text=reply.reply_text,
			created_at=reply.created_at,
		)

	@staticmethod
	def _criterion(score: Optional[int], feedback: Optional[str]) -> Optional[CriterionScore]:
		if score is None:
			return None
		return CriterionScore(score=score, feedback=feedback or "")

	def _to_response(self, row: Submission) -> SubmissionResponse:
		recordings = None
		if row.audio_files:
			recordings = {int(k): v for k, v in json.loads(row.audio_files).items()}
		return SubmissionResponse(
			submission_id=row.id,
			user_id=row.user_id,
			exam_set_id=row.exam_set_id,
			exam_course_id=row.exam_course_id,
			exam_type=row.exam_type,
			status=row.status,
			time_spent=row.time_spent,
			submitted_at=row.submitted_at,
			total_word_count=row.total_word_count,
			score=_float(row.score),
			correct_answers=row.correct_answers,
			total_questions=row.total_questions,
			overall_band=_float(row.ai_score),
			task_achievement=self._criterion(row.ai_task_achievement_score, row.ai_task_achievement_feedback),
			coherence_cohesion=self._criterion(row.ai_coherence_cohesion_score, row.ai_coherence_cohesion_feedback),
			lexical_resource=self._criterion(row.ai_lexical_resource_score, row.ai_lexical_resource_feedback),
			grammatical_range=self._criterion(row.ai_grammatical_range_score, row.ai_grammatical_range_feedback),
			general_feedback=row.ai_general_feedback,
			scoring_status=("fallback" if row.needs_manual_review else "scored") if row.ai_score is not None else None,
			needs_manual_review=bool(row.needs_manual_review),
			recordings=recordings,
			mentor_score=_float(row.mentor_score),
		)
