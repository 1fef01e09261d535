import asyncio
from typing import List

import pytest
from sqlalchemy import func, select

from ielts_exam.answer_keys import AnswerKeyStore
from ielts_exam.errors import CaptureUnavailable, PersistenceError, SessionStateError, ValidationError
from ielts_exam.models import Submission
from ielts_exam.schemas import QuestionOut
from ielts_exam.session.controller import SessionController, SessionState
from ielts_exam.session.recording import RecordingStatus
from ielts_exam.session.submitter import ExamSnapshot, ServiceSubmitter


class CollectingSubmitter:
	def __init__(self, delay: float = 0.0, fail_times: int = 0) -> None:
		self.delay = delay
		self.fail_times = fail_times
		self.snapshots: List[ExamSnapshot] = []

	async def submit(self, snapshot: ExamSnapshot):
		await asyncio.sleep(self.delay)
		if self.fail_times:
			self.fail_times -= 1
			raise PersistenceError("store unavailable")
		self.snapshots.append(snapshot)
		return {"submissionId": len(self.snapshots)}


def _questions(count: int, limit: int = 60) -> List[QuestionOut]:
	return [
		QuestionOut(question_id=100 + i, position=i, part_number=1, question_text=f"Q{i}", time_limit_seconds=limit)
		for i in range(count)
	]


def test_time_up_while_capturing_saves_current_question_and_does_not_advance(make_device) -> None:
	submitter = CollectingSubmitter()
	session = SessionController(1, "speaking", _questions(3), submitter=submitter, device=make_device(stop_delay=0.01))

	async def run() -> None:
		await session.start()
		await session.next()
		assert session.recorder.status(1) is RecordingStatus.CAPTURING
		await session.time_up()

	asyncio.run(run())

	assert session.state is SessionState.CLOSED
	assert session.finalize_reason == "time_up"
	assert session.index == 1
	assert session.recorder.is_saved(1)
	assert session.recorder.status(2) is RecordingStatus.IDLE
	assert [e for e in session.recorder.events if e == ("saved", 1)] == [("saved", 1)]
	assert ("started", 2) not in session.recorder.events
	assert sorted(submitter.snapshots[0].recordings) == [0, 1]


def test_time_up_during_next_flush_does_not_start_next_capture(make_device) -> None:
	submitter = CollectingSubmitter()
	session = SessionController(1, "speaking", _questions(3), submitter=submitter, device=make_device(stop_delay=0.05))

	async def run() -> None:
		await session.start()
		moving = asyncio.ensure_future(session.next())
		await asyncio.sleep(0.01)
		await session.time_up()
		await moving

	asyncio.run(run())

	assert session.state is SessionState.CLOSED
	assert session.index == 0
	assert session.recorder.get(1) is None
	assert list(submitter.snapshots[0].recordings) == [0]


def test_next_waits_for_saved_before_starting_next_question(make_device) -> None:
	session = SessionController(1, "speaking", _questions(5), submitter=CollectingSubmitter(), device=make_device(stop_delay=0.01))

	async def run() -> None:
		await session.start()
		for _ in range(5):
			await session.next()

	asyncio.run(run())

	events = session.recorder.events
	assert [e.question_index for e in events if e.kind == "saved"] == [0, 1, 2, 3, 4]
	for index in range(4):
		assert events.index(("saved", index)) < events.index(("started", index + 1))
	assert session.state is SessionState.CLOSED
	assert session.finalize_reason == "completed"


def test_duplicate_submit_creates_one_snapshot() -> None:
	submitter = CollectingSubmitter(delay=0.02)
	session = SessionController(1, "reading", _questions(3), submitter=submitter)

	async def run():
		await session.start()
		session.answer(100, selected="A")
		return await asyncio.gather(session.submit(), session.submit(), session.submit())

	results = asyncio.run(run())

	assert len(submitter.snapshots) == 1
	assert results == [{"submissionId": 1}] * 3
	# After Closed the stored result comes back without another submit
	assert asyncio.run(session.submit()) == {"submissionId": 1}
	assert len(submitter.snapshots) == 1


def test_duplicate_submit_persists_one_submission(db, seed, session_factory) -> None:
	exam_set = seed("reading", ["A", "B", "C"])
	questions = AnswerKeyStore(db).question_views(exam_set.id)
	session = SessionController(
		exam_set.id, "reading", questions,
		submitter=ServiceSubmitter(session_factory, user_id=7),
		duration_seconds=600,
	)

	async def run():
		await session.start()
		session.answer(questions[0].question_id, selected="A")
		session.answer(questions[1].question_id, fill="b")
		return await asyncio.gather(session.submit(), session.submit())

	first, second = asyncio.run(run())

	count = db.execute(select(func.count(Submission.id))).scalar_one()
	assert count == 1
	assert first.submission_id == second.submission_id
	assert first.correct_answers == 2
	assert first.total_questions == 3
	assert first.score == 66.67


def test_pause_stops_the_clock() -> None:
	session = SessionController(1, "listening", _questions(2), submitter=CollectingSubmitter(), duration_seconds=100)

	async def run() -> None:
		await session.start()
		await session.tick()
		await session.tick()
		await session.pause()
		for _ in range(5):
			await session.tick()
		await session.resume()
		await session.tick()

	asyncio.run(run())
	assert session.remaining_seconds == 97
	assert session.elapsed_seconds == 3


def test_clock_reaching_zero_finalizes_once() -> None:
	submitter = CollectingSubmitter()
	session = SessionController(1, "reading", _questions(2), submitter=submitter, duration_seconds=3)

	async def run() -> None:
		await session.start()
		for _ in range(6):
			await session.tick()

	asyncio.run(run())
	assert session.state is SessionState.CLOSED
	assert session.finalize_reason == "time_up"
	assert len(submitter.snapshots) == 1
	assert submitter.snapshots[0].time_spent == 3


def test_time_up_while_paused_flushes_and_submits(make_device) -> None:
	submitter = CollectingSubmitter()
	session = SessionController(1, "speaking", _questions(2), submitter=submitter, device=make_device())

	async def run() -> None:
		await session.start()
		await session.pause()
		assert session.recorder.status(0) is RecordingStatus.PAUSED
		await session.time_up()

	asyncio.run(run())
	assert session.state is SessionState.CLOSED
	assert session.recorder.is_saved(0)
	assert submitter.snapshots[0].recordings == {0: b"seg1"}


def test_time_up_during_resume_device_open_stays_finalizing(make_device) -> None:
	submitter = CollectingSubmitter(delay=0.02)
	device = make_device()
	session = SessionController(1, "speaking", _questions(2), submitter=submitter, device=device)

	async def run() -> None:
		await session.start()
		await session.pause()
		device.open_delay = 0.05
		resuming = asyncio.ensure_future(session.resume())
		await asyncio.sleep(0.01)
		finalizing = asyncio.ensure_future(session.time_up())
		await resuming

		assert session.state is SessionState.FINALIZING
		with pytest.raises(SessionStateError):
			session.answer(100, fill="late answer")
		with pytest.raises(SessionStateError):
			await session.pause()

		await finalizing

	asyncio.run(run())
	assert session.state is SessionState.CLOSED
	assert session.finalize_reason == "time_up"
	assert session.recorder.is_saved(0)
	assert session.recorder.events.index(("resumed", 0)) < session.recorder.events.index(("saved", 0))
	assert len(submitter.snapshots) == 1
	assert submitter.snapshots[0].answers == ()
	assert list(submitter.snapshots[0].recordings) == [0]


def test_run_clock_drives_session_to_close() -> None:
	submitter = CollectingSubmitter()
	session = SessionController(1, "reading", _questions(1), submitter=submitter, duration_seconds=2, tick_seconds=0.001)

	async def run() -> None:
		await session.start()
		await session.run_clock()

	asyncio.run(run())
	assert session.state is SessionState.CLOSED
	assert session.remaining_seconds == 0


def test_navigation_bounds_and_speaking_rules(make_device) -> None:
	reading = SessionController(1, "reading", _questions(3), submitter=CollectingSubmitter())
	speaking = SessionController(2, "speaking", _questions(3), submitter=CollectingSubmitter(), device=make_device())

	async def run() -> None:
		await reading.start()
		await reading.previous()
		assert reading.index == 0
		await reading.goto(2)
		assert reading.index == 2
		with pytest.raises(ValidationError):
			await reading.goto(3)
		await speaking.start()
		with pytest.raises(SessionStateError):
			await speaking.previous()
		with pytest.raises(SessionStateError):
			await speaking.goto(1)

	asyncio.run(run())


def test_answers_are_frozen_after_submit() -> None:
	session = SessionController(1, "reading", _questions(2), submitter=CollectingSubmitter())

	async def run() -> None:
		await session.start()
		session.answer(100, selected="B")
		await session.submit()

	asyncio.run(run())
	with pytest.raises(SessionStateError):
		session.answer(101, selected="C")
	assert session.answers.frozen


def test_failed_submit_can_be_retried_with_same_snapshot() -> None:
	submitter = CollectingSubmitter(fail_times=1)
	session = SessionController(1, "reading", _questions(2), submitter=submitter)

	async def run():
		await session.start()
		session.answer(100, selected="A")
		with pytest.raises(PersistenceError):
			await session.submit()
		assert session.state is SessionState.FINALIZING
		return await session.submit()

	assert asyncio.run(run()) == {"submissionId": 1}
	assert session.state is SessionState.CLOSED
	assert [a.question_id for a in submitter.snapshots[0].answers] == [100]


def test_capture_unavailable_keeps_session_not_started(make_device) -> None:
	session = SessionController(1, "speaking", _questions(2), submitter=CollectingSubmitter(), device=make_device(unavailable=True))
	with pytest.raises(CaptureUnavailable):
		asyncio.run(session.start())
	assert session.state is SessionState.NOT_STARTED


def test_constructor_validation(make_device) -> None:
	with pytest.raises(ValidationError):
		SessionController(1, "maths", _questions(1), submitter=CollectingSubmitter())
	with pytest.raises(ValidationError):
		SessionController(1, "reading", [], submitter=CollectingSubmitter())
	with pytest.raises(ValidationError):
		SessionController(1, "speaking", _questions(1), submitter=CollectingSubmitter())
	session = SessionController(1, "writing", _questions(2, limit=1200), submitter=CollectingSubmitter())
	assert session.remaining_seconds == 2400
