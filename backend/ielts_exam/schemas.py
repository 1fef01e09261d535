from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
	# Wire format is camelCase; Python code uses snake_case
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmittedAnswer(CamelModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	question_id: int
	selected_answer: Optional[str] = None
	fill_answer: Optional[str] = None

	def user_answer(self) -> str:
		if self.selected_answer:
			return self.selected_answer
		return self.fill_answer or ""


class QuestionResult(CamelModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

	question_id: int
	user_answer: str
	correct_answer: str
	is_correct: bool
	points: int


class ObjectiveScoreResult(CamelModel):
	score: float
	correct_answers: int
	total_questions: int
	question_results: List[QuestionResult] = Field(default_factory=list)


class CriterionScore(CamelModel):
	score: int = Field(ge=0, le=9)
	feedback: str


class SubjectiveScoreResult(CamelModel):
	overall_band: float
	task_achievement: CriterionScore
	coherence_cohesion: CriterionScore
	lexical_resource: CriterionScore
	grammatical_range: CriterionScore
	general_feedback: str


class ScoredWriting(SubjectiveScoreResult):
	kind: Literal["scored"] = "scored"


class FallbackWriting(SubjectiveScoreResult):
	"""Fixed result used whenever the AI assessment cannot be obtained."""
	kind: Literal["fallback"] = "fallback"
	reason: str = ""


WritingScore = Union[ScoredWriting, FallbackWriting]


# ---- API request/response bodies ----

class CreateSubmissionRequest(CamelModel):
	user_id: int
	exam_set_id: int
	exam_course_id: Optional[int] = None
	exam_type: Optional[str] = None
	answers: List[SubmittedAnswer]
	time_spent: int = Field(default=0, ge=0)
	submitted_at: Optional[datetime] = None


class SubmissionResponse(CamelModel):
	submission_id: int
	user_id: int
	exam_set_id: int
	exam_course_id: Optional[int] = None
	exam_type: str
	status: str
	time_spent: Optional[int] = None
	submitted_at: Optional[datetime] = None
	total_word_count: Optional[int] = None
	# Objective exams
	score: Optional[float] = None
	correct_answers: Optional[int] = None
	total_questions: Optional[int] = None
	question_results: Optional[List[QuestionResult]] = None
	# Writing
	overall_band: Optional[float] = None
	task_achievement: Optional[CriterionScore] = None
	coherence_cohesion: Optional[CriterionScore] = None
	lexical_resource: Optional[CriterionScore] = None
	grammatical_range: Optional[CriterionScore] = None
	general_feedback: Optional[str] = None
	scoring_status: Optional[str] = None
	needs_manual_review: bool = False
	# Speaking
	recordings: Optional[Dict[int, str]] = None
	mentor_score: Optional[float] = None


class SubmissionHistoryItem(CamelModel):
	submission_id: int
	exam_set_id: int
	exam_type: str
	exam_title: Optional[str] = None
	status: str
	score: Optional[float] = None
	ai_score: Optional[float] = None
	mentor_score: Optional[float] = None
	time_spent: Optional[int] = None
	submitted_at: Optional[datetime] = None
	reply_count: int = 0


class GradeRequest(CamelModel):
	mentor_score: float = Field(ge=0, le=100)
	feedback_content: str = ""
	status: str = "Graded"
	mentor_id: int


class FeedbackReplyRequest(CamelModel):
	feedback_id: int
	user_id: int
	reply_text: str


class FeedbackReplyOut(CamelModel):
	reply_id: int
	feedback_id: int
	user_id: int
	author_role: str
	reply_text: str
	created_at: Optional[datetime] = None


class FeedbackThreadOut(CamelModel):
	feedback_id: int
	submission_id: int
	mentor_id: int
	feedback_text: Optional[str] = None
	created_at: Optional[datetime] = None
	replies: List[FeedbackReplyOut] = Field(default_factory=list)


class ExamSetOut(CamelModel):
	exam_set_id: int
	title: str
	exam_type: str
	description: Optional[str] = None
	duration_seconds: Optional[int] = None
	questions: List["QuestionOut"] = Field(default_factory=list)


class QuestionOut(CamelModel):
	question_id: int
	position: int
	part_number: int
	part_title: Optional[str] = None
	question_text: str
	time_limit_seconds: Optional[int] = None


ExamSetOut.model_rebuild()
