"""Deterministic scoring for reading and listening answers."""
from __future__ import annotations
import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..answer_keys import AnswerKey
from ..schemas import ObjectiveScoreResult, QuestionResult, SubmittedAnswer


logger = logging.getLogger(__name__)

MULTIPLE_CHOICE_LETTERS = ("A", "B", "C", "D")
_VARIANT_SEPARATORS = re.compile(r"[,;|]")


def _normalize(text: Optional[str]) -> str:
	return (text or "").strip().upper()


def accepted_variants(correct_answer: str) -> List[str]:
	"""Split a fill-in-the-blank key into its normalized accepted variants."""
	variants = (_normalize(v) for v in _VARIANT_SEPARATORS.split(correct_answer or ""))
	return [v for v in variants if v]


def is_answer_correct(user_answer: str, correct_answer: str) -> bool:
	if not user_answer or not correct_answer:
		return False
	user = _normalize(user_answer)
	key = _normalize(correct_answer)
	if len(key) == 1 and key in MULTIPLE_CHOICE_LETTERS:
		return user == key
	# Lenient: equality, or containment in either direction.
	# A one-letter variant therefore matches any answer containing that letter.
	# A whitespace-only answer is not empty, normalizes to "" and is contained in every variant.
	return any(user == v or user in v or v in user for v in accepted_variants(key))


class ObjectiveScorer:
	def score(
		self,
		answers: Sequence[SubmittedAnswer],
		keys: Sequence[AnswerKey],
		total_questions: Optional[int] = None,
	) -> ObjectiveScoreResult:
		"""Score answers against the keys of one exam set.

		Args:
			answers: answers in the order they were submitted
			keys: answer keys of the exam set
			total_questions: question count of the exam set; defaults to len(keys)

		Answers whose question id does not resolve to exactly one key are skipped,
		as are repeated answers to a question already scored.
		"""
		id_counts = Counter(k.question_id for k in keys)
		by_id: Dict[int, AnswerKey] = {k.question_id: k for k in keys if id_counts[k.question_id] == 1}
		total = len(keys) if total_questions is None else total_questions

		results: List[QuestionResult] = []
		seen = set()
		correct = 0
		for answer in answers:
			key = by_id.get(answer.question_id)
			if key is None:
				logger.debug("Skipping question %s: no unique answer key", answer.question_id)
				continue
			if answer.question_id in seen:
				continue
			seen.add(answer.question_id)
			user_answer = answer.user_answer()
			ok = is_answer_correct(user_answer, key.correct_answer)
			if ok:
				correct += 1
			results.append(
				QuestionResult(
					question_id=answer.question_id,
					user_answer=user_answer,
					correct_answer=key.correct_answer,
					is_correct=ok,
					points=1 if ok else 0,
				)
			)

		score = round(100 * correct / total, 2) if total > 0 else 0.0
		return ObjectiveScoreResult(
			score=score,
			correct_answers=correct,
			total_questions=total,
			question_results=results,
		)
