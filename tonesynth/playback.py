from __future__ import annotations

import logging
import threading
from typing import Any, List, Protocol

import numpy as np
import numpy.typing as npt

from .errors import UnsupportedEnvironmentError

_LOGGER = logging.getLogger("tonesynth.playback")

FloatArray = npt.NDArray[np.float32]


class AudioSink(Protocol):
	"""Opaque mono float sink fed by a live session."""

	def write(self, block: FloatArray) -> None:
		...

	def close(self, abort: bool = False) -> None:
		...


class BufferSink:
	"""Collects written blocks in memory; used for tests and headless previews."""

	def __init__(self) -> None:
		self._blocks: List[FloatArray] = []
		self._lock = threading.Lock()
		self.closed = False
		self.aborted = False

	def write(self, block: FloatArray) -> None:
		with self._lock:
			if self.closed:
				return
			self._blocks.append(np.asarray(block, dtype=np.float32).copy())

	def close(self, abort: bool = False) -> None:
		with self._lock:
			if self.closed:
				return
			self.closed = True
			self.aborted = abort

	@property
	def samples(self) -> FloatArray:
		with self._lock:
			if not self._blocks:
				return np.zeros(0, dtype=np.float32)
			return np.concatenate(self._blocks)

	@property
	def blocks_written(self) -> int:
		with self._lock:
			return len(self._blocks)


def _import_sounddevice() -> Any:
	try:
		import sounddevice as sd_module  # type: ignore[import]
	except (ImportError, OSError) as exc:
		# OSError: the module is installed but PortAudio is not
		_LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
		raise UnsupportedEnvironmentError("Live playback requires sounddevice with a working PortAudio library") from exc
	return sd_module


def check_environment() -> None:
	"""Raise UnsupportedEnvironmentError unless an output device is usable."""
	sd = _import_sounddevice()
	try:
		sd.query_devices(kind="output")
	except Exception as exc:
		raise UnsupportedEnvironmentError(f"No audio output device available: {exc}") from exc


class SoundDeviceSink:
	"""Blocking writes to a PortAudio output stream, which paces the live session."""

	def __init__(self, sample_rate: int, block_size: int) -> None:
		sd = _import_sounddevice()
		try:
			self._stream = sd.OutputStream(
				samplerate=sample_rate,
				channels=1,
				dtype="float32",
				blocksize=block_size,
			)
			self._stream.start()
		except Exception as exc:
			raise UnsupportedEnvironmentError(f"Could not open audio output: {exc}") from exc
		self._closed = False
		self._lock = threading.Lock()

	def write(self, block: FloatArray) -> None:
		self._stream.write(np.asarray(block, dtype=np.float32).reshape(-1, 1))

	def close(self, abort: bool = False) -> None:
		with self._lock:
			if self._closed:
				return
			self._closed = True
		try:
			if abort:
				self._stream.abort()
			else:
				self._stream.stop()
		finally:
			self._stream.close()


def open_default_sink(sample_rate: int, block_size: int) -> AudioSink:
	return SoundDeviceSink(sample_rate, block_size)
