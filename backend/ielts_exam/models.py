from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, String, DateTime, Integer, Numeric, Text, ForeignKey, UniqueConstraint
from .db import Base


EXAM_TYPES = ("reading", "listening", "writing", "speaking")
OBJECTIVE_EXAM_TYPES = ("reading", "listening")

STATUS_PENDING = "Pending"
STATUS_GRADED = "Graded"
SUBMISSION_STATUSES = (STATUS_PENDING, STATUS_GRADED)

ROLE_MENTOR = "mentor"
ROLE_STUDENT = "student"


def utcnow() -> datetime:
	"""Naive UTC; every DateTime column stores UTC without tzinfo."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


def as_stored_utc(value: Optional[datetime]) -> Optional[datetime]:
	if value is None or value.tzinfo is None:
		return value
	return value.astimezone(timezone.utc).replace(tzinfo=None)


class ExamSet(Base):
	__tablename__ = "exam_sets"
	id = Column(Integer, primary_key=True, autoincrement=True)
	title = Column(String(256), nullable=False)
	exam_type = Column(String(16), nullable=False, index=True)
	description = Column(Text, nullable=True)
	# Whole-session budget; null means the sum of the question limits
	duration_seconds = Column(Integer, nullable=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)


class ExamQuestion(Base):
	__tablename__ = "exam_questions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	exam_set_id = Column(Integer, ForeignKey("exam_sets.id"), nullable=False, index=True)
	position = Column(Integer, default=0, nullable=False)
	part_number = Column(Integer, default=1, nullable=False)
	# e.g. "Task 1" / "Task 2" for writing, "Long Turn" for speaking
	part_title = Column(String(128), nullable=True)
	question_text = Column(Text, nullable=False)
	# Single letter A-D, or accepted variants separated by , ; |  (null for writing/speaking)
	correct_answer = Column(String(512), nullable=True)
	time_limit_seconds = Column(Integer, nullable=True)


class Submission(Base):
	__tablename__ = "submissions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(Integer, nullable=False, index=True)
	exam_set_id = Column(Integer, nullable=False, index=True)
	exam_course_id = Column(Integer, nullable=True)
	exam_type = Column(String(16), nullable=False)
	answers = Column(Text, nullable=True)  # JSON string snapshot
	audio_files = Column(Text, nullable=True)  # JSON {question_index: relative path}
	total_word_count = Column(Integer, nullable=True)
	time_spent = Column(Integer, nullable=True)
	submitted_at = Column(DateTime, nullable=True)
	# Objective scoring
	score = Column(Numeric(5, 2), nullable=True)
	correct_answers = Column(Integer, nullable=True)
	total_questions = Column(Integer, nullable=True)
	# AI writing scoring
	ai_score = Column(Numeric(3, 1), nullable=True)
	ai_task_achievement_score = Column(Integer, nullable=True)
	ai_task_achievement_feedback = Column(Text, nullable=True)
	ai_coherence_cohesion_score = Column(Integer, nullable=True)
	ai_coherence_cohesion_feedback = Column(Text, nullable=True)
	ai_lexical_resource_score = Column(Integer, nullable=True)
	ai_lexical_resource_feedback = Column(Text, nullable=True)
	ai_grammatical_range_score = Column(Integer, nullable=True)
	ai_grammatical_range_feedback = Column(Text, nullable=True)
	ai_general_feedback = Column(Text, nullable=True)
	needs_manual_review = Column(Boolean, default=False, nullable=False)
	# Mentor override lives in its own column and never replaces the automated score
	mentor_score = Column(Numeric(5, 2), nullable=True)
	status = Column(String(16), default=STATUS_PENDING, nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Feedback(Base):
	__tablename__ = "feedbacks"
	__table_args__ = (UniqueConstraint("submission_id", name="uq_feedback_submission"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	submission_id = Column(Integer, ForeignKey("submissions.id"), nullable=False, index=True)
	mentor_id = Column(Integer, nullable=False)
	feedback_text = Column(Text, nullable=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class FeedbackReply(Base):
	__tablename__ = "feedback_replies"
	id = Column(Integer, primary_key=True, autoincrement=True)
	feedback_id = Column(Integer, ForeignKey("feedbacks.id"), nullable=False, index=True)
	user_id = Column(Integer, nullable=False)
	author_role = Column(String(16), default=ROLE_STUDENT, nullable=False)
	reply_text = Column(Text, nullable=False)
	created_at = Column(DateTime, default=utcnow, nullable=False)
