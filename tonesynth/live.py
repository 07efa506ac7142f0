"""Live playback: a clock-relative event list driving a block-pulled signal graph."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from functools import partial
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import EngineConfig
from .errors import RenderFailure
from .graph import SignalGraph
from .impulse import ImpulseResponseCache, default_cache
from .models import EffectSettings, ToneSequence
from .playback import AudioSink, check_environment, open_default_sink
from .renderer import RenderState, ToneSource, build_sequence_graph

_LOGGER = logging.getLogger("tonesynth.live")

Action = Callable[[], None]
SinkFactory = Callable[[int, int], AudioSink]


class Scheduler:
	"""(timestamp, action) pairs consumed in time order against a clock."""

	def __init__(self) -> None:
		self._events: List[Tuple[float, int, Action]] = []
		self._counter = itertools.count()
		self._lock = threading.Lock()

	def schedule(self, at: float, action: Action) -> None:
		with self._lock:
			heapq.heappush(self._events, (at, next(self._counter), action))

	def run_due(self, until: float) -> int:
		"""Fire every event timestamped before ``until``; returns how many fired."""
		fired = 0
		while True:
			with self._lock:
				if not self._events or self._events[0][0] >= until:
					return fired
				_, _, action = heapq.heappop(self._events)
			action()
			fired += 1

	def cancel(self) -> int:
		with self._lock:
			dropped = len(self._events)
			self._events.clear()
		return dropped

	@property
	def next_time(self) -> Optional[float]:
		with self._lock:
			return self._events[0][0] if self._events else None

	def __len__(self) -> int:
		with self._lock:
			return len(self._events)


class LiveSession:
	"""One playback of a sequence: Idle -> Scheduled -> Rendering -> Complete|Cancelled."""

	def __init__(
		self,
		sequence: ToneSequence,
		effects: Optional[EffectSettings],
		sink: AudioSink,
		config: Optional[EngineConfig] = None,
		cache: Optional[ImpulseResponseCache] = None,
	) -> None:
		self.sequence = sequence
		self.effects = effects.model_copy(deep=True) if effects is not None else EffectSettings()
		self.sink = sink
		self.config = config or EngineConfig()
		self.cache = cache if cache is not None else default_cache(self.config.ir_cache_capacity)
		self.state = RenderState.IDLE
		self.frames = 0
		self.end_time: Optional[float] = None
		self.error: Optional[BaseException] = None
		self.scheduler = Scheduler()
		self._graph: Optional[SignalGraph] = None
		self._source: Optional[ToneSource] = None
		self._lock = threading.Lock()
		self._cancel = threading.Event()
		self._done = threading.Event()
		self._thread: Optional[threading.Thread] = None

	@property
	def current_time(self) -> float:
		return self.frames / self.config.sample_rate

	def schedule(self) -> None:
		with self._lock:
			if self.state is not RenderState.IDLE:
				return
			cfg = self.config
			now = self.current_time
			origin = now + cfg.live_start_offset
			built = build_sequence_graph(self.sequence, self.effects, cfg.live, cfg.sample_rate, origin=origin, cache=self.cache)
			for voice in built.voices:
				self.scheduler.schedule(voice.start, partial(built.source.arm, voice))
			self.end_time = now + self.sequence.total_seconds + cfg.live_cleanup_padding
			self.scheduler.schedule(self.end_time, self._complete)
			self._graph = built.graph
			self._source = built.source
			self.state = RenderState.SCHEDULED
		_LOGGER.debug("Scheduled %d tones from t=%.3fs, cleanup at %.3fs", len(self.sequence), origin, self.end_time)

	def _complete(self) -> None:
		with self._lock:
			if self.state is RenderState.RENDERING:
				self.state = RenderState.COMPLETE

	def run(self) -> RenderState:
		"""Pump blocks into the sink until the sequence completes or is stopped."""
		self.schedule()
		with self._lock:
			graph = self._graph
			if self.state is not RenderState.SCHEDULED or graph is None:
				self._done.set()
				return self.state
			self.state = RenderState.RENDERING
		block = self.config.block_size
		rate = self.config.sample_rate
		try:
			while not self._cancel.is_set():
				self.scheduler.run_due((self.frames + block) / rate)
				if self.state is not RenderState.RENDERING:
					break
				samples = graph.render(self.frames, block).astype(np.float32)
				self.sink.write(samples)
				self.frames += block
		except Exception as exc:
			if not self._cancel.is_set():
				with self._lock:
					self.state = RenderState.FAILED
				self.error = RenderFailure(f"Live playback failed: {exc}")
				_LOGGER.error("Live playback failed", exc_info=True)
				self._release(abort=True)
				self._done.set()
				raise self.error from exc
			_LOGGER.debug("Write interrupted by teardown: %s", exc)
		self._release(abort=self.state is not RenderState.COMPLETE)
		self._done.set()
		_LOGGER.info("Live session finished: %s", self.state.value)
		return self.state

	def start(self) -> "LiveSession":
		self.schedule()
		self._thread = threading.Thread(target=self._run_in_thread, name="tonesynth-live", daemon=True)
		self._thread.start()
		return self

	def _run_in_thread(self) -> None:
		try:
			self.run()
		except RenderFailure:
			# already logged and kept on self.error
			pass

	def stop(self, timeout: Optional[float] = 1.0) -> None:
		"""Tear down immediately; pending events are dropped. Safe to call repeatedly."""
		with self._lock:
			if self.state in (RenderState.COMPLETE, RenderState.CANCELLED, RenderState.FAILED):
				return
			was_running = self.state is RenderState.RENDERING
			self.state = RenderState.CANCELLED
		self._cancel.set()
		self._release(abort=True)
		thread = self._thread
		if was_running and thread is not None and thread is not threading.current_thread():
			thread.join(timeout)
		if not was_running:
			self._done.set()

	def wait(self, timeout: Optional[float] = None) -> RenderState:
		self._done.wait(timeout)
		return self.state

	@property
	def is_active(self) -> bool:
		return self.state in (RenderState.SCHEDULED, RenderState.RENDERING)

	def _release(self, abort: bool) -> None:
		dropped = self.scheduler.cancel()
		if dropped:
			_LOGGER.debug("Dropped %d pending events", dropped)
		if self._source is not None:
			self._source.clear()
		try:
			self.sink.close(abort=abort)
		except Exception:
			_LOGGER.warning("Closing audio sink failed", exc_info=True)
		if self._graph is not None:
			self._graph.reset()


class LivePlayer:
	"""Keeps at most one live session open; starting a new one stops the old."""

	def __init__(
		self,
		config: Optional[EngineConfig] = None,
		cache: Optional[ImpulseResponseCache] = None,
		sink_factory: SinkFactory = open_default_sink,
		probe: Callable[[], None] = check_environment,
	) -> None:
		self.config = config or EngineConfig()
		self.cache = cache
		self._sink_factory = sink_factory
		self._probe = probe
		self._active: Optional[LiveSession] = None
		self._lock = threading.Lock()

	def play(self, sequence: ToneSequence, effects: Optional[EffectSettings] = None) -> LiveSession:
		# raises UnsupportedEnvironmentError before anything is torn down or built
		self._probe()
		with self._lock:
			self._stop_active()
			sink = self._sink_factory(self.config.sample_rate, self.config.block_size)
			session = LiveSession(sequence, effects, sink, config=self.config, cache=self.cache)
			self._active = session
			session.start()
		return session

	def stop(self) -> None:
		with self._lock:
			self._stop_active()

	@property
	def active(self) -> Optional[LiveSession]:
		session = self._active
		if session is not None and session.is_active:
			return session
		return None

	def _stop_active(self) -> None:
		if self._active is not None:
			self._active.stop()
			self._active = None
