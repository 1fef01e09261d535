"""
Speaking Recording Orchestrator
===============================

Drives the audio capture of a speaking exam, one recording per question.

Per question index::

	Idle -> Capturing -> Stopping -> Saved
	         Capturing <-> Paused

Guarantees:
- Only one capture stream is open at a time. ``start`` is refused while any
  other question is Capturing, Paused or Stopping, i.e. until it is Saved.
- The question index travels with the capture. It is bound when the segment
  is opened and used when the audio is stored; there is no "current index"
  read at stop time.
- ``stop`` is awaitable and returns only once the recording is Saved. Callers
  that advance the session (next question, finish, time-up) await it.

Pause/resume: pausing closes the current segment, resuming opens a new one for
the same index. What the saved audio contains depends on the segment policy:
``replace`` keeps only the last segment (the legacy behaviour), ``append``
concatenates all segments in capture order.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol

from ..errors import CaptureUnavailable, RecordingConflict
from ..settings import settings


logger = logging.getLogger(__name__)


class RecordingStatus(str, enum.Enum):
	IDLE = "Idle"
	CAPTURING = "Capturing"
	PAUSED = "Paused"
	STOPPING = "Stopping"
	SAVED = "Saved"


class SegmentPolicy(str, enum.Enum):
	REPLACE = "replace"
	APPEND = "append"


class RecordingEvent(NamedTuple):
	kind: str  # started | paused | resumed | saved
	question_index: int


# ============================================================================
# DEVICE INTERFACE
# ============================================================================

class CaptureHandle(Protocol):
	async def stop(self) -> bytes:
		"""Finish the segment and return its encoded audio."""
		...


class CaptureDevice(Protocol):
	async def open(self) -> CaptureHandle:
		"""Open a capture stream.

		Raises:
			CaptureUnavailable: no input device, or permission denied.
		"""
		...


class _Segment(NamedTuple):
	# The index is part of the segment value; it is what the save step uses.
	question_index: int
	handle: CaptureHandle


class Recording:
	def __init__(self, question_index: int) -> None:
		self._question_index = question_index
		self.status = RecordingStatus.IDLE
		self.segments: List[bytes] = []
		self.audio: Optional[bytes] = None
		self.error: Optional[str] = None
		self._segment: Optional[_Segment] = None
		self._lock = asyncio.Lock()

	@property
	def question_index(self) -> int:
		return self._question_index

	@property
	def saved(self) -> bool:
		return self.status is RecordingStatus.SAVED


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class RecordingOrchestrator:
	def __init__(
		self,
		device: CaptureDevice,
		*,
		policy: Optional[SegmentPolicy | str] = None,
		on_event: Optional[Callable[[RecordingEvent], None]] = None,
	) -> None:
		self.device = device
		self.policy = SegmentPolicy(policy or settings.recording_segment_policy)
		self.on_event = on_event
		self.events: List[RecordingEvent] = []
		self._recordings: Dict[int, Recording] = {}
		# Index whose device open is in flight; counts as holding the device
		self._opening: Optional[int] = None

	# ---- queries ----

	def get(self, question_index: int) -> Optional[Recording]:
		return self._recordings.get(question_index)

	def status(self, question_index: int) -> RecordingStatus:
		rec = self._recordings.get(question_index)
		return rec.status if rec else RecordingStatus.IDLE

	def is_saved(self, question_index: int) -> bool:
		return self.status(question_index) is RecordingStatus.SAVED

	@property
	def capturing_index(self) -> Optional[int]:
		for index, rec in self._recordings.items():
			if rec.status is RecordingStatus.CAPTURING:
				return index
		return None

	def _device_holder(self) -> Optional[int]:
		if self._opening is not None:
			return self._opening
		for index, rec in self._recordings.items():
			if rec.status in (RecordingStatus.CAPTURING, RecordingStatus.PAUSED, RecordingStatus.STOPPING):
				return index
		return None

	def saved_blobs(self) -> Dict[int, bytes]:
		"""Audio of every Saved recording, keyed by question index."""
		return {
			index: rec.audio or b""
			for index, rec in sorted(self._recordings.items())
			if rec.status is RecordingStatus.SAVED
		}

	# ---- transitions ----

	async def start(self, question_index: int) -> Recording:
		existing = self._recordings.get(question_index)
		if existing is not None and existing.status is not RecordingStatus.IDLE:
			raise RecordingConflict(f"question {question_index} is already {existing.status.value}")
		holder = self._device_holder()
		if holder is not None:
			raise RecordingConflict(f"capture device is held by question {holder}")
		segment = await self._open_segment(question_index)
		rec = Recording(question_index)
		rec._segment = segment
		rec.status = RecordingStatus.CAPTURING
		self._recordings[question_index] = rec
		self._emit("started", question_index)
		return rec

	async def pause(self, question_index: int) -> Recording:
		rec = self._require(question_index)
		async with rec._lock:
			if rec.status is not RecordingStatus.CAPTURING:
				raise RecordingConflict(f"cannot pause question {question_index} while {rec.status.value}")
			rec.status = RecordingStatus.STOPPING
			await self._close_segment(rec)
			rec.status = RecordingStatus.PAUSED
		self._emit("paused", question_index)
		return rec

	async def resume(self, question_index: int) -> Recording:
		rec = self._require(question_index)
		async with rec._lock:
			if rec.status is not RecordingStatus.PAUSED:
				raise RecordingConflict(f"cannot resume question {question_index} while {rec.status.value}")
			# On CaptureUnavailable the recording stays Paused with its earlier segments
			rec._segment = await self._open_segment(question_index)
			rec.status = RecordingStatus.CAPTURING
		self._emit("resumed", question_index)
		return rec

	async def stop(self, question_index: int) -> Recording:
		"""Finish the recording and wait until it is Saved.

		Concurrent calls for the same index all return once the single save
		has happened.
		"""
		rec = self._require(question_index)
		async with rec._lock:
			if rec.status is RecordingStatus.SAVED:
				return rec
			if rec.status is RecordingStatus.CAPTURING:
				rec.status = RecordingStatus.STOPPING
				await self._close_segment(rec)
			elif rec.status is RecordingStatus.PAUSED:
				rec.status = RecordingStatus.STOPPING
			else:
				raise RecordingConflict(f"cannot stop question {question_index} while {rec.status.value}")
			rec.audio = self._compose(rec.segments)
			rec.status = RecordingStatus.SAVED
		logger.info("Recording for question %d saved (%d bytes)", question_index, len(rec.audio or b""))
		self._emit("saved", question_index)
		return rec

	async def flush(self, question_index: int) -> Optional[Recording]:
		"""Bring a started recording to Saved; no-op for a question never started."""
		rec = self._recordings.get(question_index)
		if rec is None or rec.status is RecordingStatus.IDLE:
			return None
		return await self.stop(question_index)

	async def abandon(self) -> None:
		"""Best-effort flush of everything still open, e.g. on navigation away."""
		for index, rec in list(self._recordings.items()):
			if rec.status in (RecordingStatus.SAVED, RecordingStatus.IDLE):
				continue
			try:
				await self.stop(index)
			except Exception:
				logger.warning("Could not flush recording %d while abandoning the session", index, exc_info=True)

	# ---- internals ----

	def _require(self, question_index: int) -> Recording:
		rec = self._recordings.get(question_index)
		if rec is None:
			raise RecordingConflict(f"question {question_index} has no recording")
		return rec

	async def _open_segment(self, question_index: int) -> _Segment:
		self._opening = question_index
		try:
			handle = await self.device.open()
		except CaptureUnavailable:
			logger.warning("Capture unavailable for question %d", question_index)
			raise
		except Exception as err:
			logger.warning("Capture device failed to open for question %d: %s", question_index, err)
			raise CaptureUnavailable(f"audio capture unavailable: {err}") from err
		finally:
			self._opening = None
		return _Segment(question_index, handle)

	async def _close_segment(self, rec: Recording) -> None:
		segment = rec._segment
		rec._segment = None
		if segment is None:
			return
		try:
			data = await segment.handle.stop()
		except Exception as err:
			# Keep whatever earlier segments hold; the session must still be able to advance
			logger.error("Capture stop failed for question %d", segment.question_index, exc_info=True)
			rec.error = str(err)
			return
		self._recordings[segment.question_index].segments.append(data or b"")

	def _compose(self, segments: List[bytes]) -> bytes:
		if not segments:
			return b""
		if self.policy is SegmentPolicy.APPEND:
			return b"".join(segments)
		return segments[-1]

	def _emit(self, kind: str, question_index: int) -> None:
		event = RecordingEvent(kind, question_index)
		self.events.append(event)
		logger.debug("recording %s: question %d", kind, question_index)
		if self.on_event is not None:
			self.on_event(event)
