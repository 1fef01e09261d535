"""
Exam Session Controller
=======================

Single source of truth for time and position within one timed exam attempt.

States::

	NotStarted -> Running -> (Paused <-> Running)* -> Finalizing -> Closed

The clock decrements ``remaining_seconds`` only while Running. Reaching zero,
or an explicit ``time_up()``, finalizes the session whatever its state; the
time-up path never advances to another question. Moving past the last
question with ``next()`` also finalizes.

Finalizing always flushes the active speaking recording before the snapshot
is taken, and the snapshot is handed to the submitter exactly once: a second
``submit()`` while one is pending waits for the same result instead of
creating another submission.

All methods run on one asyncio loop. Position changes and finalization are
serialized with a lock, so a time-up arriving while ``next()`` waits for a
recording to save cannot leave a capture running on the next question.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from ..errors import ConcurrencyGuardError, SessionStateError, ValidationError
from ..models import EXAM_TYPES
from ..schemas import QuestionOut, SubmittedAnswer
from .answers import AnswerCollector
from .recording import CaptureDevice, RecordingOrchestrator, RecordingStatus
from .submitter import ExamSnapshot, ExamSubmitter


logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
	NOT_STARTED = "NotStarted"
	RUNNING = "Running"
	PAUSED = "Paused"
	FINALIZING = "Finalizing"
	CLOSED = "Closed"


class SessionController:
	def __init__(
		self,
		exam_set_id: int,
		exam_type: str,
		questions: Sequence[QuestionOut],
		*,
		submitter: ExamSubmitter,
		duration_seconds: Optional[int] = None,
		device: Optional[CaptureDevice] = None,
		recorder: Optional[RecordingOrchestrator] = None,
		tick_seconds: float = 1.0,
	) -> None:
		if exam_type not in EXAM_TYPES:
			raise ValidationError(f"unknown exam type {exam_type!r}")
		if not questions:
			raise ValidationError("an exam session needs at least one question")
		if duration_seconds is None:
			limits = [q.time_limit_seconds for q in questions if q.time_limit_seconds]
			duration_seconds = sum(limits) if limits else None
		if not duration_seconds or duration_seconds <= 0:
			raise ValidationError("exam duration must be a positive number of seconds")

		self.exam_set_id = exam_set_id
		self.exam_type = exam_type
		self.questions = tuple(questions)
		self.submitter = submitter
		self.tick_seconds = tick_seconds
		self.state = SessionState.NOT_STARTED
		self.index = 0
		self.remaining_seconds = int(duration_seconds)
		self.elapsed_seconds = 0
		self.finalize_reason: Optional[str] = None
		self.result: Any = None

		self.answers = AnswerCollector([q.question_id for q in self.questions])
		self.recorder: Optional[RecordingOrchestrator] = None
		if exam_type == "speaking":
			if recorder is None and device is None:
				raise ValidationError("a speaking session needs a capture device")
			self.recorder = recorder or RecordingOrchestrator(device)

		self._lock = asyncio.Lock()
		self._finalize_task: Optional[asyncio.Task] = None
		self._snapshot: Optional[ExamSnapshot] = None

	# ---- queries ----

	@property
	def question_count(self) -> int:
		return len(self.questions)

	@property
	def current_question(self) -> QuestionOut:
		return self.questions[self.index]

	@property
	def active_part(self) -> int:
		return self.current_question.part_number

	@property
	def is_open(self) -> bool:
		return self.state in (SessionState.RUNNING, SessionState.PAUSED)

	# ---- lifecycle ----

	async def start(self) -> None:
		if self.state is not SessionState.NOT_STARTED:
			raise SessionStateError(f"cannot start a session that is {self.state.value}")
		if self.recorder is not None:
			# CaptureUnavailable propagates and the session stays NotStarted
			await self.recorder.start(self.index)
		self.state = SessionState.RUNNING
		logger.info("Session for exam set %s started (%ss)", self.exam_set_id, self.remaining_seconds)

	async def tick(self) -> None:
		"""One clock second. Only counts while Running."""
		if self.state is not SessionState.RUNNING:
			return
		self.remaining_seconds = max(0, self.remaining_seconds - 1)
		self.elapsed_seconds += 1
		if self.remaining_seconds == 0:
			await self.time_up()

	async def run_clock(self) -> None:
		"""Drive ``tick()`` until the session leaves Running/Paused."""
		while self.state in (SessionState.NOT_STARTED, SessionState.RUNNING, SessionState.PAUSED):
			await asyncio.sleep(self.tick_seconds)
			await self.tick()

	async def pause(self) -> None:
		async with self._lock:
			if self.state is not SessionState.RUNNING:
				raise SessionStateError(f"cannot pause while {self.state.value}")
			self.state = SessionState.PAUSED
			if self.recorder is not None and self.recorder.status(self.index) is RecordingStatus.CAPTURING:
				await self.recorder.pause(self.index)

	async def resume(self) -> None:
		async with self._lock:
			if self.state is not SessionState.PAUSED:
				raise SessionStateError(f"cannot resume while {self.state.value}")
			if self.recorder is not None:
				status = self.recorder.status(self.index)
				if status is RecordingStatus.PAUSED:
					await self.recorder.resume(self.index)
				elif status is RecordingStatus.IDLE:
					await self.recorder.start(self.index)
			# A time-up during the device open has already moved on to Finalizing
			if self.state is SessionState.PAUSED:
				self.state = SessionState.RUNNING

	# ---- navigation ----

	async def next(self) -> Any:
		"""Advance one question; past the last one the session finalizes."""
		async with self._lock:
			self._require_open("move to the next question")
			if self.recorder is not None:
				await self.recorder.flush(self.index)
				if not self.is_open:
					# Time-up arrived while the recording was saving
					return None
			if self.index < self.question_count - 1:
				self.index += 1
				if self.recorder is not None and self.state is SessionState.RUNNING:
					await self.recorder.start(self.index)
				return None
		return await self._finalize("completed")

	async def previous(self) -> None:
		async with self._lock:
			self._require_open("move to the previous question")
			if self.recorder is not None:
				raise SessionStateError("speaking questions are answered once, in order")
			if self.index > 0:
				self.index -= 1

	async def goto(self, index: int) -> None:
		async with self._lock:
			self._require_open("change question")
			if self.recorder is not None:
				raise SessionStateError("speaking questions are answered once, in order")
			if not 0 <= index < self.question_count:
				raise ValidationError(f"question index {index} is outside 0..{self.question_count - 1}")
			self.index = index

	def answer(self, question_id: int, *, selected: Optional[str] = None, fill: Optional[str] = None) -> SubmittedAnswer:
		if not self.is_open:
			raise SessionStateError(f"cannot answer while {self.state.value}")
		return self.answers.record(question_id, selected=selected, fill=fill)

	# ---- finalization ----

	async def submit(self) -> Any:
		return await self._finalize("submitted")

	async def time_up(self) -> Any:
		"""Force finalization, even while Paused."""
		if self.state in (SessionState.NOT_STARTED, SessionState.CLOSED):
			return self.result
		self.remaining_seconds = 0
		return await self._finalize("time_up")

	async def abandon(self) -> None:
		"""Navigation away: best-effort flush, nothing is submitted."""
		if self.recorder is not None:
			await self.recorder.abandon()
		self.state = SessionState.CLOSED
		logger.info("Session for exam set %s abandoned", self.exam_set_id)

	async def _finalize(self, reason: str) -> Any:
		if self.state is SessionState.NOT_STARTED:
			raise SessionStateError("cannot submit a session that has not started")
		if self.state is SessionState.CLOSED:
			return self.result
		try:
			self._claim_finalize(reason)
		except ConcurrencyGuardError:
			logger.debug("Submit already in flight; %s request absorbed", reason)
		try:
			return await asyncio.shield(self._finalize_task)
		finally:
			task = self._finalize_task
			if task is not None and task.done() and not task.cancelled() and task.exception() is not None:
				# Allow an explicit retry after a failed submit; answers stay frozen
				self._finalize_task = None

	def _claim_finalize(self, reason: str) -> None:
		if self._finalize_task is not None:
			raise ConcurrencyGuardError("a submit is already in flight for this session")
		self.state = SessionState.FINALIZING
		self.finalize_reason = self.finalize_reason or reason
		self._finalize_task = asyncio.ensure_future(self._run_finalize())

	async def _run_finalize(self) -> Any:
		async with self._lock:
			if self.recorder is not None:
				await self.recorder.flush(self.index)
		if self._snapshot is None:
			self._snapshot = ExamSnapshot(
				exam_set_id=self.exam_set_id,
				exam_type=self.exam_type,
				answers=self.answers.snapshot(),
				recordings=self.recorder.saved_blobs() if self.recorder is not None else {},
				time_spent=self.elapsed_seconds,
				submitted_at=datetime.now(timezone.utc),
				reason=self.finalize_reason or "submitted",
			)
		self.result = await self.submitter.submit(self._snapshot)
		self.state = SessionState.CLOSED
		logger.info("Session for exam set %s closed (%s)", self.exam_set_id, self.finalize_reason)
		return self.result

	def _require_open(self, action: str) -> None:
		if not self.is_open:
			raise SessionStateError(f"cannot {action} while {self.state.value}")
