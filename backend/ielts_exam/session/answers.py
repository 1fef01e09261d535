from __future__ import annotations
from typing import Dict, Optional, Sequence, Tuple

from ..errors import SessionStateError, ValidationError
from ..schemas import SubmittedAnswer


class AnswerCollector:
	"""Per-question answers of one exam session.

	Each answer is either a selected option or a fill-in text. ``snapshot()``
	freezes the collector; nothing can change after submit.
	"""

	def __init__(self, question_ids: Sequence[int]) -> None:
		self._order: Tuple[int, ...] = tuple(question_ids)
		self._answers: Dict[int, SubmittedAnswer] = {}
		self._frozen: Optional[Tuple[SubmittedAnswer, ...]] = None

	@property
	def frozen(self) -> bool:
		return self._frozen is not None

	def record(self, question_id: int, *, selected: Optional[str] = None, fill: Optional[str] = None) -> SubmittedAnswer:
		if self._frozen is not None:
			raise SessionStateError("answers are frozen after submit")
		if question_id not in self._order:
			raise ValidationError(f"question {question_id} is not part of this exam")
		if selected is not None and fill is not None:
			raise ValidationError("an answer is either a selected option or a fill-in text, not both")
		if selected is None and fill is None:
			raise ValidationError("answer requires a selected option or a fill-in text")
		answer = SubmittedAnswer(question_id=question_id, selected_answer=selected, fill_answer=fill)
		self._answers[question_id] = answer
		return answer

	def snapshot(self) -> Tuple[SubmittedAnswer, ...]:
		"""Answered questions in exam order. Idempotent; freezes the collector."""
		if self._frozen is None:
			self._frozen = tuple(self._answers[q] for q in self._order if q in self._answers)
		return self._frozen
