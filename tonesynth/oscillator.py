from __future__ import annotations

from typing import Callable, Dict

import numpy as np
import numpy.typing as npt

from .models import Waveform

Signal = npt.NDArray[np.float64]


def _phase(freq: float, t: Signal) -> Signal:
	# fractional cycle position in [0, 1)
	cycles = freq * t
	return cycles - np.floor(cycles)


def sine(freq: float, t: Signal) -> Signal:
	return np.sin(2.0 * np.pi * freq * t)


def square(freq: float, t: Signal) -> Signal:
	return np.where(_phase(freq, t) < 0.5, 1.0, -1.0)


def sawtooth(freq: float, t: Signal) -> Signal:
	# sawtooth via fractional part formula
	cycles = freq * t
	return 2.0 * (cycles - np.floor(cycles + 0.5))


def triangle(freq: float, t: Signal) -> Signal:
	# 2/pi * arcsin(sin)
	return (2.0 / np.pi) * np.arcsin(np.sin(2.0 * np.pi * freq * t))


GENERATORS: Dict[str, Callable[[float, Signal], Signal]] = {
	"sine": sine,
	"square": square,
	"sawtooth": sawtooth,
	"triangle": triangle,
}


class Oscillator:
	"""Fixed-frequency periodic source; phase is zero at the oscillator's start."""

	def __init__(self, waveform: Waveform, frequency: float) -> None:
		if waveform not in GENERATORS:
			raise ValueError(f"Unknown waveform: {waveform!r}")
		self.waveform = waveform
		self.frequency = float(frequency)
		self._generate = GENERATORS[waveform]

	def render(self, t: Signal) -> Signal:
		"""Sample the waveform at ``t`` seconds since the oscillator started."""
		return self._generate(self.frequency, np.asarray(t, dtype=np.float64))

	def __repr__(self) -> str:
		return f"Oscillator({self.waveform!r}, {self.frequency:g})"
