import logging

from sqlalchemy import create_engine, inspect, text

from ielts_exam.db import ensure_schema
from ielts_exam.logging_setup import setup_console_logging


def test_info_reports_status(client) -> None:
	resp = client.get("/info")
	assert resp.status_code == 200
	body = resp.json()
	assert body["status"] == "ok"
	assert isinstance(body["ai_configured"], bool)


def test_ensure_schema_adds_late_columns(tmp_path) -> None:
	engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
	with engine.begin() as conn:
		conn.execute(text(
			"CREATE TABLE submissions (id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL, "
			"exam_set_id INTEGER NOT NULL, exam_type VARCHAR(16) NOT NULL)"
		))

	ensure_schema(engine)
	ensure_schema(engine)

	cols = {c["name"] for c in inspect(engine).get_columns("submissions")}
	assert {"needs_manual_review", "total_word_count", "audio_files"} <= cols
	engine.dispose()


def test_setup_console_logging_accepts_level_names() -> None:
	root = logging.getLogger()
	previous_level = root.level
	try:
		setup_console_logging("debug")
		assert root.level == logging.DEBUG
		assert logging.getLogger("httpx").level == logging.WARNING
	finally:
		root.setLevel(previous_level)
