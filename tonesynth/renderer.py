"""Assemble tones, envelopes and effects into a signal graph and render it.

Two modes share the same graph: offline renders a finite buffer anchored at
t=0 in one deterministic pass, live (see ``live.py``) pulls blocks against an
advancing clock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional

import numpy as np
import numpy.typing as npt

from .config import EngineConfig, RenderProfile
from .effects import EffectsChain
from .envelope import ControlPoint, compute_envelope, evaluate_envelope
from .errors import RenderFailure
from .graph import GainStage, Signal, SignalGraph, Stage, seconds_to_frame
from .impulse import ImpulseResponseCache, default_cache
from .models import EffectSettings, ToneSequence
from .oscillator import Oscillator
from .wav import encode_wav

_LOGGER = logging.getLogger("tonesynth.renderer")

RenderedBuffer = npt.NDArray[np.float32]


class RenderState(str, Enum):
	IDLE = "idle"
	SCHEDULED = "scheduled"
	RENDERING = "rendering"
	COMPLETE = "complete"
	CANCELLED = "cancelled"
	FAILED = "failed"


@dataclass
class Voice:
	"""One tone: an oscillator gated to [start, stop) and shaped by its envelope."""

	oscillator: Oscillator
	start: float
	stop: float
	points: List[ControlPoint]
	peak: float
	sample_rate: int
	start_frame: int = field(init=False)
	stop_frame: int = field(init=False)

	def __post_init__(self) -> None:
		self.start_frame = seconds_to_frame(self.start, self.sample_rate)
		self.stop_frame = seconds_to_frame(self.stop, self.sample_rate)

	def render_into(self, out: Signal, offset: int) -> None:
		lo = max(self.start_frame, offset)
		hi = min(self.stop_frame, offset + len(out))
		if lo >= hi:
			return
		times = np.arange(lo, hi, dtype=np.float64) / self.sample_rate
		wave = self.oscillator.render(times - self.start)
		out[lo - offset : hi - offset] += wave * evaluate_envelope(self.points, times) * self.peak


class ToneSource(Stage):
	"""Sums the voices that are currently armed; finished voices are dropped."""

	name = "tones"

	def __init__(self) -> None:
		self._voices: List[Voice] = []
		self._lock = threading.Lock()

	def arm(self, voice: Voice) -> None:
		with self._lock:
			self._voices.append(voice)

	def clear(self) -> None:
		with self._lock:
			self._voices.clear()

	@property
	def active(self) -> int:
		with self._lock:
			return len(self._voices)

	def process(self, block: Signal, offset: int) -> Signal:
		out = np.zeros(len(block), dtype=np.float64)
		end = offset + len(block)
		with self._lock:
			for voice in self._voices:
				voice.render_into(out, offset)
			self._voices = [v for v in self._voices if v.stop_frame > end]
		return out

	def reset(self) -> None:
		self.clear()


class SequenceGraph(NamedTuple):
	graph: SignalGraph
	source: ToneSource
	voices: List[Voice]
	end_time: float


def build_sequence_graph(
	sequence: ToneSequence,
	effects: Optional[EffectSettings],
	profile: RenderProfile,
	sample_rate: int,
	origin: float = 0.0,
	cache: Optional[ImpulseResponseCache] = None,
) -> SequenceGraph:
	"""Lay the tones back to back from ``origin`` and route them through the effects.

	Voices are returned unarmed; the caller decides when they join the source.
	"""
	graph = SignalGraph(sample_rate)
	source = graph.add(ToneSource())
	master = graph.connect(source, GainStage(profile.master_gain, seconds_to_frame(origin, sample_rate), name="master"))
	if not EffectsChain(sample_rate, cache=cache).route(graph, master, graph.destination, effects, origin):
		graph.connect(master, graph.destination)

	envelope = (effects or EffectSettings()).envelope
	if effects is None:
		envelope = envelope.model_copy(update={"enabled": False})

	voices: List[Voice] = []
	cursor = origin
	for tone in sequence.tones:
		start = cursor
		stop = start + tone.seconds
		voices.append(
			Voice(
				oscillator=Oscillator(tone.waveform, tone.frequency),
				start=start,
				stop=stop,
				points=compute_envelope(start, stop, envelope),
				peak=profile.tone_peak,
				sample_rate=sample_rate,
			)
		)
		cursor = stop
	return SequenceGraph(graph, source, voices, cursor)


def offline_length(sequence: ToneSequence, sample_rate: int = 44100, safety: float = 0.05) -> int:
	return int(math.ceil(sample_rate * (sequence.total_seconds + safety)))


class OfflineRender:
	"""One deterministic render of a sequence into a finite buffer."""

	def __init__(
		self,
		sequence: ToneSequence,
		effects: Optional[EffectSettings] = None,
		config: Optional[EngineConfig] = None,
		cache: Optional[ImpulseResponseCache] = None,
	) -> None:
		self.sequence = sequence
		self.effects = effects.model_copy(deep=True) if effects is not None else EffectSettings()
		self.config = config or EngineConfig()
		self.cache = cache if cache is not None else default_cache(self.config.ir_cache_capacity)
		self.state = RenderState.IDLE
		self.length = offline_length(sequence, self.config.sample_rate, self.config.offline_safety_margin)
		self._graph: Optional[SignalGraph] = None

	def schedule(self) -> None:
		if self.state is not RenderState.IDLE:
			return
		built = build_sequence_graph(
			self.sequence,
			self.effects,
			self.config.offline,
			self.config.sample_rate,
			origin=0.0,
			cache=self.cache,
		)
		for voice in built.voices:
			built.source.arm(voice)
		self._graph = built.graph
		self.state = RenderState.SCHEDULED

	def cancel(self) -> None:
		if self.state in (RenderState.COMPLETE, RenderState.FAILED):
			return
		self.state = RenderState.CANCELLED
		self._release()

	def run(self) -> RenderedBuffer:
		self.schedule()
		if self.state is RenderState.CANCELLED or self._graph is None:
			raise RenderFailure("Render was cancelled before it completed")
		self.state = RenderState.RENDERING
		_LOGGER.info("Rendering %d tones offline into %d frames", len(self.sequence), self.length)
		try:
			block = self._graph.render(0, self.length)
			if not np.all(np.isfinite(block)):
				raise RenderFailure("Render produced non-finite samples")
			buffer = block.astype(np.float32)
		except RenderFailure:
			self.state = RenderState.FAILED
			raise
		except Exception as exc:
			self.state = RenderState.FAILED
			_LOGGER.error("Offline render failed", exc_info=True)
			raise RenderFailure(f"Offline render failed: {exc}") from exc
		finally:
			self._release()
		self.state = RenderState.COMPLETE
		return buffer

	def _release(self) -> None:
		if self._graph is not None:
			self._graph.reset()
			self._graph = None


def render_offline(
	sequence: ToneSequence,
	effects: Optional[EffectSettings] = None,
	config: Optional[EngineConfig] = None,
	cache: Optional[ImpulseResponseCache] = None,
) -> RenderedBuffer:
	return OfflineRender(sequence, effects, config=config, cache=cache).run()


async def arender_offline(
	sequence: ToneSequence,
	effects: Optional[EffectSettings] = None,
	config: Optional[EngineConfig] = None,
	cache: Optional[ImpulseResponseCache] = None,
) -> RenderedBuffer:
	"""Run ``render_offline`` in a worker thread so the event loop stays free."""
	return await asyncio.to_thread(render_offline, sequence, effects, config, cache)


def render_wav(
	sequence: ToneSequence,
	effects: Optional[EffectSettings] = None,
	config: Optional[EngineConfig] = None,
	cache: Optional[ImpulseResponseCache] = None,
) -> bytes:
	cfg = config or EngineConfig()
	buffer = render_offline(sequence, effects, config=cfg, cache=cache)
	return encode_wav(buffer, cfg.sample_rate)
