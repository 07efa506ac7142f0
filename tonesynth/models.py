from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator

from .errors import InputValidationError


Waveform = Literal["sine", "square", "sawtooth", "triangle"]
FilterType = Literal["lowpass", "highpass", "bandpass"]

WAVEFORMS = ("sine", "square", "sawtooth", "triangle")
FILTER_TYPES = ("lowpass", "highpass", "bandpass")

MAX_TONES = 24
MIN_FREQUENCY = 20.0
MAX_FREQUENCY = 20000.0
MIN_DURATION_MS = 50.0
MAX_DURATION_MS = 15000.0
MAX_TOTAL_DURATION_MS = 60000.0


def clamp(value: float, low: float, high: float) -> float:
	return min(max(value, low), high)


def coerce_number(value: Any, default: float, low: float, high: float, zero_is_default: bool = False) -> float:
	"""Read a loosely typed number and clamp it into [low, high].

	Non-numeric and NaN input falls back to ``default``. With ``zero_is_default``
	a zero also means "use the default".
	"""
	if isinstance(value, bool):
		number = float(value)
	else:
		try:
			number = float(value)
		except (TypeError, ValueError):
			number = default
	if math.isnan(number) or (zero_is_default and number == 0.0):
		number = default
	return clamp(number, low, high)


class Tone(BaseModel):
	model_config = ConfigDict(frozen=True)

	frequency: float = Field(default=440.0, ge=MIN_FREQUENCY, le=MAX_FREQUENCY, allow_inf_nan=False)
	waveform: Waveform = Field(default="sine")
	duration_ms: float = Field(default=1000.0, ge=MIN_DURATION_MS, le=MAX_DURATION_MS, allow_inf_nan=False)

	@property
	def seconds(self) -> float:
		return self.duration_ms / 1000.0


DEFAULT_TONE = Tone()


class ToneSequence(BaseModel):
	model_config = ConfigDict(frozen=True)

	tones: List[Tone] = Field(min_length=1, max_length=MAX_TONES)

	@model_validator(mode="after")
	def _check_total_duration(self) -> "ToneSequence":
		total = self.total_duration_ms
		if total > MAX_TOTAL_DURATION_MS:
			raise ValueError(f"Total duration {total:.0f} ms exceeds {MAX_TOTAL_DURATION_MS / 1000:.0f} seconds")
		return self

	@property
	def total_duration_ms(self) -> float:
		return sum(t.duration_ms for t in self.tones)

	@property
	def total_seconds(self) -> float:
		total = 0.0
		for t in self.tones:
			total += t.seconds
		return total

	def __len__(self) -> int:
		return len(self.tones)


def parse_sequence(raw: Union[ToneSequence, Sequence[Union[Tone, Dict[str, Any]]]]) -> ToneSequence:
	"""Validate caller input into a ToneSequence, raising InputValidationError."""
	if isinstance(raw, ToneSequence):
		return raw
	try:
		return ToneSequence.model_validate({"tones": list(raw)})
	except ValidationError as exc:
		raise InputValidationError(str(exc)) from exc


class EnvelopeSettings(BaseModel):
	enabled: bool = True
	attack: float = 0.02
	decay: float = 0.12
	sustain: float = 0.75
	release: float = 0.2

	@field_validator("attack", mode="before")
	@classmethod
	def _attack(cls, v: Any) -> float:
		return coerce_number(v, 0.02, 0.0, 2.0)

	@field_validator("decay", mode="before")
	@classmethod
	def _decay(cls, v: Any) -> float:
		return coerce_number(v, 0.12, 0.0, 2.0)

	@field_validator("sustain", mode="before")
	@classmethod
	def _sustain(cls, v: Any) -> float:
		return coerce_number(v, 0.75, 0.0, 1.0)

	@field_validator("release", mode="before")
	@classmethod
	def _release(cls, v: Any) -> float:
		return coerce_number(v, 0.2, 0.0, 4.0)


class FilterSettings(BaseModel):
	enabled: bool = False
	type: FilterType = "lowpass"
	frequency: float = 2000.0
	q: float = 1.0

	@field_validator("type", mode="before")
	@classmethod
	def _type(cls, v: Any) -> str:
		return v if v in FILTER_TYPES else "lowpass"

	@field_validator("frequency", mode="before")
	@classmethod
	def _frequency(cls, v: Any) -> float:
		return coerce_number(v, 2000.0, 60.0, 12000.0)

	@field_validator("q", mode="before")
	@classmethod
	def _q(cls, v: Any) -> float:
		return coerce_number(v, 1.0, 0.1, 18.0)


class ReverbSettings(BaseModel):
	enabled: bool = True
	mix: float = 0.35
	duration: float = 2.5
	decay: float = 2.5

	@field_validator("mix", mode="before")
	@classmethod
	def _mix(cls, v: Any) -> float:
		return coerce_number(v, 0.0, 0.0, 1.0)

	@field_validator("duration", mode="before")
	@classmethod
	def _duration(cls, v: Any) -> float:
		return coerce_number(v, 2.5, 0.1, 10.0, zero_is_default=True)

	@field_validator("decay", mode="before")
	@classmethod
	def _decay(cls, v: Any) -> float:
		return coerce_number(v, 2.5, 0.1, 10.0, zero_is_default=True)


class DelaySettings(BaseModel):
	enabled: bool = False
	mix: float = 0.3
	# max_time is declared before time so the time validator can see it
	max_time: float = 1.5
	time: float = 0.25
	feedback: float = 0.35

	@field_validator("mix", mode="before")
	@classmethod
	def _mix(cls, v: Any) -> float:
		return coerce_number(v, 0.0, 0.0, 1.0)

	@field_validator("max_time", mode="before")
	@classmethod
	def _max_time(cls, v: Any) -> float:
		return coerce_number(v, 1.5, 0.1, 5.0, zero_is_default=True)

	@field_validator("time", mode="before")
	@classmethod
	def _time(cls, v: Any, info: ValidationInfo) -> float:
		max_time = info.data.get("max_time", 1.5)
		return coerce_number(v, 0.25, 0.01, max_time, zero_is_default=True)

	@field_validator("feedback", mode="before")
	@classmethod
	def _feedback(cls, v: Any) -> float:
		return coerce_number(v, 0.35, 0.0, 0.95)


class EffectSettings(BaseModel):
	envelope: EnvelopeSettings = Field(default_factory=EnvelopeSettings)
	filter: FilterSettings = Field(default_factory=FilterSettings)
	reverb: ReverbSettings = Field(default_factory=ReverbSettings)
	delay: DelaySettings = Field(default_factory=DelaySettings)
