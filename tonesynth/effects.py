"""Shared effects chain: optional filter, then dry / delay / reverb branches."""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy import signal

from .graph import GainStage, Signal, SignalGraph, Stage, seconds_to_frame
from .impulse import ImpulseResponseCache, get_impulse_response
from .models import FILTER_TYPES, EffectSettings, clamp

_LOGGER = logging.getLogger("tonesynth.effects")

MIN_FILTER_FREQUENCY = 60.0
MAX_FILTER_FREQUENCY = 12000.0
MIN_Q = 0.1
MAX_Q = 18.0
MAX_FEEDBACK = 0.95
MIN_DELAY_TIME = 0.01
DRY_FLOOR = 0.05
MAX_WET = 0.9
DELAY_LOUDNESS_WEIGHT = 0.6

# host convolver normalization: -58 dB calibration referenced to 44.1 kHz
GAIN_CALIBRATION = 10.0 ** (-58.0 / 20.0)
CALIBRATION_SAMPLE_RATE = 44100.0
MIN_POWER = 0.000125


def _finite_or(value: float, default: float) -> float:
	return default if not math.isfinite(value) else value


def biquad_coefficients(kind: str, frequency: float, q: float, sample_rate: int) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
	"""Return normalized (b, a) for a lowpass, highpass or bandpass section.

	Lowpass and highpass read ``q`` as resonance in dB; bandpass reads it as a
	linear quality factor with 0 dB peak gain.
	"""
	nyquist = sample_rate / 2.0
	frequency = clamp(_finite_or(frequency, 2000.0), MIN_FILTER_FREQUENCY, MAX_FILTER_FREQUENCY)
	frequency = min(frequency, nyquist * 0.999)
	q = clamp(_finite_or(q, 1.0), MIN_Q, MAX_Q)
	w0 = 2.0 * math.pi * frequency / sample_rate
	cos_w0 = math.cos(w0)
	sin_w0 = math.sin(w0)

	if kind == "bandpass":
		alpha = sin_w0 / (2.0 * q)
		b = [alpha, 0.0, -alpha]
	else:
		alpha = sin_w0 / (2.0 * 10.0 ** (q / 20.0))
		if kind == "highpass":
			b = [(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0]
		else:
			b = [(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0]
	a = [1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha]
	a0 = a[0]
	return np.array(b) / a0, np.array(a) / a0


class BiquadFilter(Stage):
	name = "filter"

	def __init__(self, kind: str, frequency: float, q: float, sample_rate: int) -> None:
		self.kind = kind if kind in FILTER_TYPES else "lowpass"
		self._b, self._a = biquad_coefficients(self.kind, frequency, q, sample_rate)
		self._zi = np.zeros(2)

	def process(self, block: Signal, offset: int) -> Signal:
		out, self._zi = signal.lfilter(self._b, self._a, block, zi=self._zi)
		return out

	def reset(self) -> None:
		self._zi = np.zeros(2)


def normalization_scale(impulse: npt.ArrayLike, sample_rate: int) -> float:
	ir = np.asarray(impulse, dtype=np.float64)
	if ir.size == 0:
		return 1.0
	power = math.sqrt(float(np.sum(ir * ir)) / ir.size)
	if not math.isfinite(power) or power < MIN_POWER:
		power = MIN_POWER
	return (1.0 / power) * GAIN_CALIBRATION * (CALIBRATION_SAMPLE_RATE / sample_rate)


class ConvolutionReverb(Stage):
	"""Full linear convolution, streamed with overlap-add across blocks."""

	name = "reverb"

	def __init__(self, impulse: npt.ArrayLike, sample_rate: int, normalize: bool = True) -> None:
		kernel = np.asarray(impulse, dtype=np.float64)
		if normalize:
			kernel = kernel * normalization_scale(kernel, sample_rate)
		self._kernel = kernel
		self._tail = np.zeros(max(kernel.size - 1, 0))

	def process(self, block: Signal, offset: int) -> Signal:
		n = len(block)
		if self._kernel.size == 0:
			return np.zeros(n)
		if block.any():
			full = signal.fftconvolve(block, self._kernel)
		else:
			full = np.zeros(n + self._kernel.size - 1)
		full[: self._tail.size] += self._tail
		out = full[:n].copy()
		self._tail = full[n:].copy()
		return out

	def reset(self) -> None:
		self._tail = np.zeros(max(self._kernel.size - 1, 0))


class FeedbackDelay(Stage):
	"""Delay line whose output is also fed back into its input.

	``out[n] = in[n - D] + feedback * out[n - D]``, held in a fixed ring buffer
	sized for ``max_time``. Work proceeds in chunks no longer than D frames, so
	every read hits a slot written in an earlier chunk.
	"""

	name = "delay"

	def __init__(self, delay_time: float, feedback: float, max_time: float, sample_rate: int) -> None:
		self.max_time = clamp(_finite_or(max_time, 1.5), 0.1, 5.0)
		self.delay_time = clamp(_finite_or(delay_time, 0.25), MIN_DELAY_TIME, self.max_time)
		self.feedback = clamp(_finite_or(feedback, 0.0), 0.0, MAX_FEEDBACK)
		self._size = int(math.ceil(self.max_time * sample_rate)) + 1
		self.delay_frames = min(max(1, int(round(self.delay_time * sample_rate))), self._size - 1)
		self._ring = np.zeros(self._size)
		self._write = 0

	def process(self, block: Signal, offset: int) -> Signal:
		n = len(block)
		out = np.empty(n)
		pos = 0
		while pos < n:
			m = min(self.delay_frames, n - pos)
			write_idx = (self._write + np.arange(m)) % self._size
			read_idx = (write_idx - self.delay_frames) % self._size
			delayed = self._ring[read_idx]
			self._ring[write_idx] = block[pos : pos + m] + self.feedback * delayed
			out[pos : pos + m] = delayed
			self._write = (self._write + m) % self._size
			pos += m
		return out

	def reset(self) -> None:
		self._ring.fill(0.0)
		self._write = 0


def effective_mixes(effects: EffectSettings) -> Tuple[float, float]:
	"""(reverb_mix, delay_mix) after applying the enabled flags."""
	reverb = effects.reverb
	delay = effects.delay
	reverb_mix = clamp(reverb.mix, 0.0, 1.0) if reverb.enabled and reverb.mix > 0 else 0.0
	delay_mix = clamp(delay.mix, 0.0, 1.0) if delay.enabled and delay.mix > 0 else 0.0
	return reverb_mix, delay_mix


def dry_level(reverb_mix: float, delay_mix: float) -> float:
	if reverb_mix <= 0 and delay_mix <= 0:
		return 1.0
	combined = min(MAX_WET, reverb_mix + delay_mix * DELAY_LOUDNESS_WEIGHT)
	return clamp(1.0 - combined, DRY_FLOOR, 1.0)


class EffectsChain:
	def __init__(self, sample_rate: int, cache: Optional[ImpulseResponseCache] = None) -> None:
		self.sample_rate = sample_rate
		self.cache = cache

	def route(self, graph: SignalGraph, source: Stage, destination: Stage, effects: Optional[EffectSettings], time_origin: float) -> bool:
		"""Wire ``source`` to ``destination`` through the configured effects.

		Returns False only when nothing was routed and the caller must connect
		source to destination directly.
		"""
		if effects is None:
			return False
		since = seconds_to_frame(time_origin, self.sample_rate)

		branch = source
		if effects.filter.enabled:
			filt = BiquadFilter(effects.filter.type, effects.filter.frequency, effects.filter.q, self.sample_rate)
			branch = graph.connect(source, filt)

		reverb_mix, delay_mix = effective_mixes(effects)
		level = dry_level(reverb_mix, delay_mix)
		dry = graph.connect(branch, GainStage(level, since, name="dry"))
		graph.connect(dry, destination)

		if delay_mix > 0:
			settings = effects.delay
			delay = graph.connect(branch, FeedbackDelay(settings.time, settings.feedback, settings.max_time, self.sample_rate))
			wet = graph.connect(delay, GainStage(delay_mix, since, name="delay-wet"))
			graph.connect(wet, destination)

		if reverb_mix > 0:
			settings_r = effects.reverb
			impulse = get_impulse_response(self.sample_rate, settings_r.duration, settings_r.decay, cache=self.cache)
			convolver = graph.connect(branch, ConvolutionReverb(impulse, self.sample_rate))
			wet = graph.connect(convolver, GainStage(reverb_mix, since, name="reverb-wet"))
			graph.connect(wet, destination)

		_LOGGER.debug(
			"Routed effects: filter=%s dry=%.3f delay=%.3f reverb=%.3f",
			effects.filter.enabled,
			level,
			delay_mix,
			reverb_mix,
		)
		return True
