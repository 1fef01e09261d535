from __future__ import annotations
import logging


def setup_console_logging(level: int | str = logging.INFO) -> None:
	"""
	Call once at app start. Prints logs to console.
	"""
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.INFO
	# httpx logs every request at INFO, including the AI endpoint URL with its key
	logging.getLogger("httpx").setLevel(logging.WARNING)
	root = logging.getLogger()
	if root.handlers:
		# already configured (avoid duplicates, e.g. under uvicorn --reload)
		root.setLevel(level)
		return

	root.setLevel(level)
	h = logging.StreamHandler()
	fmt = logging.Formatter(
		"[%(asctime)s] %(levelname)s %(name)s: %(message)s",
		datefmt="%H:%M:%S",
	)
	h.setFormatter(fmt)
	root.addHandler(h)
