import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ielts_exam.db import Base, get_db
from ielts_exam.errors import CaptureUnavailable
from ielts_exam.main import app
from ielts_exam.models import ExamQuestion, ExamSet
from ielts_exam.routers.submission import get_aggregator
from ielts_exam.scoring.subjective import SubjectiveScorer
from ielts_exam.submissions import SubmissionAggregator


class FakeHandle:
	def __init__(self, data: bytes, delay: float, log: List[str], fail: bool = False) -> None:
		self.data = data
		self.delay = delay
		self.log = log
		self.fail = fail

	async def stop(self) -> bytes:
		await asyncio.sleep(self.delay)
		if self.fail:
			raise RuntimeError("device lost")
		self.log.append(f"stopped {self.data.decode()}")
		return self.data


class FakeDevice:
	"""Capture device producing b"seg1", b"seg2", ... per opened segment."""

	def __init__(self, *, stop_delay: float = 0.0, open_delay: float = 0.0, unavailable: bool = False, fail_stop: bool = False) -> None:
		self.stop_delay = stop_delay
		self.open_delay = open_delay
		self.unavailable = unavailable
		self.fail_stop = fail_stop
		self.opened = 0
		self.log: List[str] = []

	async def open(self) -> FakeHandle:
		await asyncio.sleep(self.open_delay)
		if self.unavailable:
			raise CaptureUnavailable("microphone permission denied")
		self.opened += 1
		self.log.append(f"opened seg{self.opened}")
		return FakeHandle(f"seg{self.opened}".encode(), self.stop_delay, self.log, self.fail_stop)


class OfflineScorer(SubjectiveScorer):
	"""Writing scorer whose AI client can never be built, so every call falls back."""

	def __init__(self) -> None:
		super().__init__(client_factory=self._no_client, retries=0, timeout=1.0)

	@staticmethod
	def _no_client():
		raise RuntimeError("AI disabled in tests")


@pytest.fixture
def make_device():
	return FakeDevice


@pytest.fixture
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
	)
	Base.metadata.create_all(bind=engine)
	factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
	yield factory
	engine.dispose()


@pytest.fixture
def db(session_factory):
	session = session_factory()
	yield session
	session.close()


def add_exam_set(db, exam_type: str, keys: List[Optional[str]], *, title: Optional[str] = None, duration_seconds: Optional[int] = None, question_texts: Optional[List[str]] = None) -> ExamSet:
	exam_set = ExamSet(title=title or f"{exam_type} test", exam_type=exam_type, duration_seconds=duration_seconds)
	db.add(exam_set)
	db.flush()
	for i, key in enumerate(keys):
		db.add(ExamQuestion(
			exam_set_id=exam_set.id,
			position=i,
			part_number=1,
			question_text=(question_texts[i] if question_texts else f"Question {i + 1}"),
			correct_answer=key,
			time_limit_seconds=60,
		))
	db.commit()
	db.refresh(exam_set)
	return exam_set


@pytest.fixture
def seed(db):
	def _seed(exam_type: str, keys: List[Optional[str]], **kwargs) -> ExamSet:
		return add_exam_set(db, exam_type, keys, **kwargs)
	return _seed


@pytest.fixture
def client(session_factory, tmp_path):
	def _get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	def _get_aggregator():
		session = session_factory()
		try:
			yield SubmissionAggregator(session, subjective=OfflineScorer(), audio_dir=tmp_path / "audio")
		finally:
			session.close()

	app.dependency_overrides[get_db] = _get_db
	app.dependency_overrides[get_aggregator] = _get_aggregator
	yield TestClient(app)
	app.dependency_overrides.clear()
