from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt

from .models import coerce_number

_LOGGER = logging.getLogger("tonesynth.impulse")

DEFAULT_DURATION = 2.5
DEFAULT_DECAY = 2.5

CacheKey = Tuple[int, float, float]


def generate_impulse_response(sample_rate: int, duration: float, decay: float, rng: Optional[np.random.Generator] = None) -> npt.NDArray[np.float32]:
	"""Synthesize a decaying noise burst: U(-1, 1) * (1 - i/length) ** decay."""
	length = int(np.floor(sample_rate * duration))
	if length <= 0:
		return np.zeros(0, dtype=np.float32)
	gen = rng if rng is not None else np.random.default_rng()
	noise = gen.uniform(-1.0, 1.0, size=length)
	shape = (1.0 - np.arange(length, dtype=np.float64) / length) ** decay
	return (noise * shape).astype(np.float32)


class ImpulseResponseCache:
	"""Process-wide store of synthetic impulse responses.

	Keyed by the exact (sample_rate, duration, decay) tuple after clamping.
	Least recently used entries are evicted past ``capacity``. A race on a miss
	may compute the same key twice; the later value simply replaces the earlier.
	"""

	def __init__(self, capacity: int = 32, rng: Optional[np.random.Generator] = None) -> None:
		if capacity < 1:
			raise ValueError("capacity must be at least 1")
		self.capacity = capacity
		self._rng = rng
		self._entries: "OrderedDict[CacheKey, npt.NDArray[np.float32]]" = OrderedDict()
		self._lock = threading.Lock()

	@staticmethod
	def make_key(sample_rate: int, duration: float, decay: float) -> CacheKey:
		return (
			int(sample_rate),
			coerce_number(duration, DEFAULT_DURATION, 0.1, 10.0, zero_is_default=True),
			coerce_number(decay, DEFAULT_DECAY, 0.1, 10.0, zero_is_default=True),
		)

	def get(self, sample_rate: int, duration: float, decay: float) -> npt.NDArray[np.float32]:
		key = self.make_key(sample_rate, duration, decay)
		with self._lock:
			hit = self._entries.get(key)
			if hit is not None:
				self._entries.move_to_end(key)
				return hit
		_LOGGER.debug("Generating impulse response %s", key)
		if self._rng is not None:
			# a shared Generator is not safe for concurrent draws
			with self._lock:
				buffer = generate_impulse_response(key[0], key[1], key[2], rng=self._rng)
		else:
			buffer = generate_impulse_response(key[0], key[1], key[2])
		buffer.setflags(write=False)
		with self._lock:
			self._entries[key] = buffer
			self._entries.move_to_end(key)
			while len(self._entries) > self.capacity:
				evicted, _ = self._entries.popitem(last=False)
				_LOGGER.debug("Evicted impulse response %s", evicted)
		return buffer

	def __contains__(self, key: object) -> bool:
		with self._lock:
			return key in self._entries

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()


_DEFAULT_CACHE: Optional[ImpulseResponseCache] = None
_DEFAULT_LOCK = threading.Lock()


def default_cache(capacity: int = 32) -> ImpulseResponseCache:
	"""Return the shared cache, creating it with ``capacity`` on first use."""
	global _DEFAULT_CACHE
	with _DEFAULT_LOCK:
		if _DEFAULT_CACHE is None:
			_DEFAULT_CACHE = ImpulseResponseCache(capacity=capacity)
		return _DEFAULT_CACHE


def get_impulse_response(sample_rate: int, duration: float, decay: float, cache: Optional[ImpulseResponseCache] = None) -> npt.NDArray[np.float32]:
	if cache is None:
		cache = default_cache()
	return cache.get(sample_rate, duration, decay)
