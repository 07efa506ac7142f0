import math

import pytest
from pydantic import ValidationError

from tonesynth.errors import InputValidationError
from tonesynth.models import (
	MAX_TONES,
	DelaySettings,
	EffectSettings,
	EnvelopeSettings,
	FilterSettings,
	ReverbSettings,
	Tone,
	ToneSequence,
	parse_sequence,
)


def test_parse_sequence_accepts_dicts_and_tones():
	seq = parse_sequence([{"frequency": 440, "waveform": "sine", "duration_ms": 1000}, Tone(frequency=220.0, waveform="square", duration_ms=500)])
	assert isinstance(seq, ToneSequence)
	assert len(seq) == 2
	assert seq.total_duration_ms == 1500
	assert seq.total_seconds == pytest.approx(1.5)


def test_total_duration_over_limit_rejected():
	tones = [{"frequency": 440, "duration_ms": d} for d in (15000, 15000, 15000, 14951, 50)]
	with pytest.raises(InputValidationError):
		parse_sequence(tones)


def test_total_duration_at_limit_accepted():
	tones = [{"frequency": 440, "duration_ms": 15000} for _ in range(4)]
	assert parse_sequence(tones).total_duration_ms == 60000


def test_too_many_tones_rejected():
	tones = [{"frequency": 440, "duration_ms": 100} for _ in range(MAX_TONES + 1)]
	with pytest.raises(InputValidationError):
		parse_sequence(tones)
	assert len(parse_sequence(tones[:MAX_TONES])) == MAX_TONES


@pytest.mark.parametrize("tone", [
	{"frequency": 19.9},
	{"frequency": 20000.1},
	{"frequency": float("nan")},
	{"duration_ms": 49},
	{"duration_ms": 15001},
	{"waveform": "noise"},
])
def test_out_of_range_tone_rejected(tone):
	with pytest.raises(InputValidationError):
		parse_sequence([tone])


def test_empty_sequence_rejected():
	with pytest.raises(InputValidationError):
		parse_sequence([])


def test_input_validation_error_is_value_error():
	with pytest.raises(ValueError):
		parse_sequence([])


def test_tone_is_frozen():
	tone = Tone()
	with pytest.raises(ValidationError):
		tone.frequency = 880.0  # type: ignore[misc]


def test_envelope_settings_clamp():
	env = EnvelopeSettings(attack=-1, decay=5, sustain=1.5, release=float("nan"))
	assert env.attack == 0.0
	assert env.decay == 2.0
	assert env.sustain == 1.0
	assert env.release == 0.2


def test_filter_settings_clamp_and_fallback():
	f = FilterSettings(enabled=True, type="notch", frequency=50000, q=float("nan"))
	assert f.type == "lowpass"
	assert f.frequency == 12000.0
	assert f.q == 1.0
	assert FilterSettings(frequency=10, q=40).frequency == 60.0
	assert FilterSettings(q=40).q == 18.0


def test_reverb_settings_zero_means_default():
	r = ReverbSettings(duration=0, decay=0, mix=3)
	assert r.duration == 2.5
	assert r.decay == 2.5
	assert r.mix == 1.0


def test_delay_time_clamped_to_max_time():
	d = DelaySettings(enabled=True, max_time=1.0, time=3.0, feedback=2.0)
	assert d.max_time == 1.0
	assert d.time == 1.0
	assert d.feedback == 0.95
	assert DelaySettings(time=0).time == 0.25
	assert DelaySettings(time=0.001).time == 0.01
	assert DelaySettings(max_time=100).max_time == 5.0


def test_effect_settings_defaults():
	fx = EffectSettings()
	assert fx.envelope.enabled and fx.reverb.enabled
	assert not fx.filter.enabled and not fx.delay.enabled
	assert math.isclose(fx.reverb.mix, 0.35)
