"""
Writing Assessment
==================

Scores IELTS-style writing responses with an LLM examiner.

The model is asked for four criterion scores (0-9, whole bands) with a short
justification each, plus general feedback, as one JSON object. The overall
band is computed here from the four criteria; any overall value the model
returns is ignored.

Scoring never raises. A network error, a timeout, a missing API key or a
payload that does not match the schema all produce a ``FallbackWriting``
result (every criterion 5, overall 5.0) that tells the student a mentor will
review the response manually. Callers branch on ``result.kind``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..gemini_client import GeminiClient
from ..schemas import CriterionScore, FallbackWriting, ScoredWriting, WritingScore
from ..settings import settings


logger = logging.getLogger(__name__)

FALLBACK_BAND = 5.0
FALLBACK_CRITERION_SCORE = 5
FALLBACK_CRITERION_FEEDBACK = "AI scoring unavailable. Manual review required."
FALLBACK_GENERAL_FEEDBACK = (
	"AI scoring service is currently unavailable. Your submission has been saved "
	"and will be reviewed manually by our instructors."
)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


# ============================================================================
# MODEL OUTPUT SCHEMA
# ============================================================================

class _Criterion(BaseModel):
	model_config = ConfigDict(extra="ignore")

	score: int = Field(ge=0, le=9)
	feedback: str = Field(min_length=1)


class _WritingAssessment(BaseModel):
	"""What the examiner prompt asks the model to return."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

	task_achievement: _Criterion
	coherence_cohesion: _Criterion
	lexical_resource: _Criterion
	grammatical_range: _Criterion
	general_feedback: str


# ============================================================================
# PURE HELPERS
# ============================================================================

def round_to_half_band(value: float) -> float:
	"""Round to the nearest 0.5, halves going up (6.25 -> 6.5, 6.75 -> 7.0)."""
	return math.floor(value * 2 + 0.5) / 2


def overall_band(*criterion_scores: int) -> float:
	return round_to_half_band(sum(criterion_scores) / len(criterion_scores))


def strip_code_fence(text: str) -> str:
	"""Remove a surrounding ```json ... ``` fence, if any."""
	cleaned = (text or "").strip()
	match = _FENCE.match(cleaned)
	if match:
		return match.group(1).strip()
	return cleaned


def parse_assessment(raw: str) -> ScoredWriting:
	"""Parse the model output into a scored result.

	Raises:
		ValueError: when the text is not JSON or does not match the schema
		(pydantic's ValidationError is a ValueError).
	"""
	data = json.loads(strip_code_fence(raw))
	if not isinstance(data, dict):
		raise ValueError("assessment payload is not a JSON object")
	parsed = _WritingAssessment.model_validate(data)
	criteria = (
		parsed.task_achievement,
		parsed.coherence_cohesion,
		parsed.lexical_resource,
		parsed.grammatical_range,
	)
	return ScoredWriting(
		overall_band=overall_band(*(c.score for c in criteria)),
		task_achievement=CriterionScore(score=parsed.task_achievement.score, feedback=parsed.task_achievement.feedback.strip()),
		coherence_cohesion=CriterionScore(score=parsed.coherence_cohesion.score, feedback=parsed.coherence_cohesion.feedback.strip()),
		lexical_resource=CriterionScore(score=parsed.lexical_resource.score, feedback=parsed.lexical_resource.feedback.strip()),
		grammatical_range=CriterionScore(score=parsed.grammatical_range.score, feedback=parsed.grammatical_range.feedback.strip()),
		general_feedback=parsed.general_feedback.strip(),
	)


def fallback_result(reason: str) -> FallbackWriting:
	criterion = CriterionScore(score=FALLBACK_CRITERION_SCORE, feedback=FALLBACK_CRITERION_FEEDBACK)
	return FallbackWriting(
		overall_band=FALLBACK_BAND,
		task_achievement=criterion,
		coherence_cohesion=criterion,
		lexical_resource=criterion,
		grammatical_range=criterion,
		general_feedback=FALLBACK_GENERAL_FEEDBACK,
		reason=reason,
	)


# ============================================================================
# PROMPTS
# ============================================================================

def _build_system_prompt(task_type: str) -> str:
	return f"""
You are an expert IELTS examiner. Score the {task_type} writing response according to the official IELTS criteria.

Score the response on 4 criteria, each a whole band from 0 to 9:
1. Task Achievement (Task 1) / Task Response (Task 2): how well the task requirements are fulfilled
2. Coherence and Cohesion: how well ideas are organized and connected
3. Lexical Resource: vocabulary range, accuracy and appropriateness
4. Grammatical Range and Accuracy: grammar variety and correctness

For each criterion give the score and a 2-3 sentence justification.

Return STRICT JSON only, no markdown, following exactly this schema:
{{
  "taskAchievement": {{"score": integer, "feedback": string}},
  "coherenceCohesion": {{"score": integer, "feedback": string}},
  "lexicalResource": {{"score": integer, "feedback": string}},
  "grammaticalRange": {{"score": integer, "feedback": string}},
  "generalFeedback": "overall comments and improvement suggestions"
}}
""".strip()


def _build_user_prompt(task_prompt: str, response_text: str) -> str:
	return (
		f"Task Prompt:\n{task_prompt}\n\n"
		f"Student Response:\n{response_text}\n\n"
		"Please score this IELTS writing response according to the 4 criteria."
	)


# ============================================================================
# SCORER
# ============================================================================

class SubjectiveScorer:
	def __init__(
		self,
		client_factory: Callable[[], GeminiClient] = GeminiClient,
		*,
		retries: Optional[int] = None,
		timeout: Optional[float] = None,
		max_chars: Optional[int] = None,
	) -> None:
		self.client_factory = client_factory
		self.retries = settings.ai_scoring_retries if retries is None else max(0, retries)
		self.timeout = settings.ai_timeout_seconds if timeout is None else timeout
		self.max_chars = settings.ai_max_response_chars if max_chars is None else max_chars

	async def score(self, task_prompt: str, response_text: str, task_type: str = "Academic") -> WritingScore:
		text = (response_text or "").strip()
		if not text:
			return fallback_result("empty response")
		if len(text) > self.max_chars:
			text = text[: self.max_chars]
		system = _build_system_prompt(task_type or "Academic")
		user = _build_user_prompt(task_prompt or "", text)

		reason = "no attempt made"
		for attempt in range(1, self.retries + 2):
			try:
				raw = await asyncio.wait_for(self._ask(system, user), timeout=self.timeout)
				result = parse_assessment(raw)
			except asyncio.TimeoutError:
				reason = f"timed out after {self.timeout}s"
			except Exception as err:
				reason = f"{type(err).__name__}: {err}"
			else:
				logger.info("Writing scored on attempt %d: overall band %.1f", attempt, result.overall_band)
				return result
			logger.warning("Writing scoring attempt %d failed: %s", attempt, reason)
		logger.error("Writing scoring fell back to manual review: %s", reason)
		return fallback_result(reason)

	async def _ask(self, system: str, user: str) -> str:
		client = self.client_factory()
		try:
			return await client.generate(
				user,
				system=system,
				temperature=0.3,
				max_output_tokens=1000,
				json_output=True,
			)
		finally:
			try:
				await client.aclose()
			except Exception:
				logger.debug("Closing the AI client failed", exc_info=True)
