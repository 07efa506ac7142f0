"""Per-tone amplitude envelopes.

An envelope is a list of automation control points in the style of an audio
parameter timeline: ``SET`` jumps to a value at a time and holds it, ``LINEAR``
ramps from the previous point to its own value. ``compute_envelope`` produces
the points for one tone and ``evaluate_envelope`` turns them into per-sample
gains.
"""

from __future__ import annotations

from enum import Enum
from typing import List, NamedTuple, Sequence

import numpy as np
import numpy.typing as npt

from .models import EnvelopeSettings

CLICK_RAMP_MAX = 0.02
CLICK_RAMP_MIN = 0.0025
CLICK_RAMP_ZERO_LENGTH = 0.005


class RampKind(str, Enum):
	SET = "set"
	LINEAR = "linear"


class ControlPoint(NamedTuple):
	time: float
	value: float
	kind: RampKind


class EnvelopeStages(NamedTuple):
	attack: float
	decay: float
	sustain: float
	release: float

	@property
	def total(self) -> float:
		return self.attack + self.decay + self.sustain + self.release


def compute_stages(duration: float, settings: EnvelopeSettings) -> EnvelopeStages:
	"""Split ``duration`` seconds into ADSR stage lengths.

	Release is reserved first so a short tone always ends with a clean ramp to
	zero; attack and decay take what is left, and sustain fills the rest.
	"""
	duration = max(0.0, duration)
	release_time = min(settings.release, duration)
	remaining = max(0.0, duration - release_time)
	attack_time = min(settings.attack, remaining)
	remaining -= attack_time
	decay_time = min(settings.decay, remaining)
	remaining -= decay_time
	return EnvelopeStages(attack_time, decay_time, max(0.0, remaining), release_time)


def click_ramp(duration: float) -> float:
	quarter = duration / 4 or CLICK_RAMP_ZERO_LENGTH
	return max(min(CLICK_RAMP_MAX, quarter), CLICK_RAMP_MIN)


def compute_envelope(start: float, stop: float, settings: EnvelopeSettings) -> List[ControlPoint]:
	duration = max(0.0, stop - start)
	if duration == 0:
		return [ControlPoint(start, 0.0, RampKind.SET)]

	points = [ControlPoint(start, 0.0, RampKind.SET)]
	if not settings.enabled:
		# at most half the tone so the fade in and fade out never overlap
		ramp = min(click_ramp(duration), duration / 2)
		sustain_end = max(start, stop - ramp)
		points.append(ControlPoint(start + ramp, 1.0, RampKind.LINEAR))
		points.append(ControlPoint(sustain_end, 1.0, RampKind.SET))
		points.append(ControlPoint(stop, 0.0, RampKind.LINEAR))
		return points

	stages = compute_stages(duration, settings)
	if stages.release >= duration:
		# release swallows the tone: one ramp down from full level
		points.append(ControlPoint(start, 1.0, RampKind.SET))
		points.append(ControlPoint(stop, 0.0, RampKind.LINEAR))
		return points

	level = settings.sustain
	attack_end = start + stages.attack
	decay_end = attack_end + stages.decay
	release_start = decay_end + stages.sustain

	if stages.attack > 0:
		points.append(ControlPoint(attack_end, 1.0, RampKind.LINEAR))
	else:
		points.append(ControlPoint(start, 1.0, RampKind.SET))

	if stages.decay > 0:
		points.append(ControlPoint(decay_end, level, RampKind.LINEAR))
	else:
		points.append(ControlPoint(attack_end, level, RampKind.SET))

	points.append(ControlPoint(release_start, level, RampKind.SET))

	if stages.release > 0:
		points.append(ControlPoint(stop, 0.0, RampKind.LINEAR))
	else:
		points.append(ControlPoint(stop, 0.0, RampKind.SET))
	return points


def evaluate_envelope(points: Sequence[ControlPoint], times: npt.ArrayLike) -> npt.NDArray[np.float64]:
	t = np.asarray(times, dtype=np.float64)
	gains = np.zeros_like(t)
	if not points:
		return gains
	for prev, nxt in zip(points, points[1:]):
		mask = (t >= prev.time) & (t < nxt.time)
		if not mask.any():
			continue
		if nxt.kind is RampKind.LINEAR:
			frac = (t[mask] - prev.time) / (nxt.time - prev.time)
			gains[mask] = prev.value + (nxt.value - prev.value) * frac
		else:
			gains[mask] = prev.value
	last = points[-1]
	gains[t >= last.time] = last.value
	return gains
