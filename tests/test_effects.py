import numpy as np
import pytest

from tonesynth.effects import (
	BiquadFilter,
	ConvolutionReverb,
	EffectsChain,
	FeedbackDelay,
	biquad_coefficients,
	dry_level,
	effective_mixes,
	normalization_scale,
)
from tonesynth.graph import GainStage, SignalGraph, Stage
from tonesynth.impulse import ImpulseResponseCache
from tonesynth.models import DelaySettings, EffectSettings, FilterSettings, ReverbSettings


SR = 44100


class Impulse(Stage):
	name = "impulse"

	def process(self, block, offset):
		out = np.zeros(len(block))
		if offset == 0 and len(block):
			out[0] = 1.0
		return out


def _chunked(stage, x, size):
	parts = []
	for pos in range(0, len(x), size):
		parts.append(stage.process(x[pos : pos + size], pos))
	return np.concatenate(parts)


def test_dry_level_full_reverb_keeps_floor_of_dry():
	assert dry_level(1.0, 0.0) == pytest.approx(0.1)
	assert dry_level(0.0, 0.0) == 1.0
	assert dry_level(0.35, 0.3) == pytest.approx(1.0 - (0.35 + 0.18))
	assert dry_level(1.0, 1.0) == pytest.approx(0.1)


def test_effective_mixes_respect_enabled_flags():
	fx = EffectSettings(reverb=ReverbSettings(enabled=False, mix=0.8), delay=DelaySettings(enabled=True, mix=0.4))
	assert effective_mixes(fx) == (0.0, pytest.approx(0.4))
	fx = EffectSettings(reverb=ReverbSettings(enabled=True, mix=0.0))
	assert effective_mixes(fx) == (0.0, 0.0)


def test_lowpass_has_unity_dc_gain_and_cuts_highs():
	b, a = biquad_coefficients("lowpass", 1000.0, 1.0, SR)
	assert np.sum(b) / np.sum(a) == pytest.approx(1.0)
	t = np.arange(SR // 4) / SR
	low = np.sin(2 * np.pi * 100 * t)
	high = np.sin(2 * np.pi * 10000 * t)
	out_low = BiquadFilter("lowpass", 1000.0, 1.0, SR).process(low, 0)
	out_high = BiquadFilter("lowpass", 1000.0, 1.0, SR).process(high, 0)
	assert np.abs(out_low[-2000:]).max() > 0.9
	assert np.abs(out_high[-2000:]).max() < 0.05


def test_highpass_blocks_dc_and_bandpass_peaks_at_center():
	b, a = biquad_coefficients("highpass", 1000.0, 1.0, SR)
	assert np.sum(b) / np.sum(a) == pytest.approx(0.0, abs=1e-12)
	t = np.arange(SR // 4) / SR
	center = BiquadFilter("bandpass", 2000.0, 2.0, SR).process(np.sin(2 * np.pi * 2000 * t), 0)
	off = BiquadFilter("bandpass", 2000.0, 2.0, SR).process(np.sin(2 * np.pi * 200 * t), 0)
	assert np.abs(center[-2000:]).max() == pytest.approx(1.0, abs=0.02)
	assert np.abs(off[-2000:]).max() < 0.2


def test_filter_state_carries_across_blocks():
	x = np.random.default_rng(0).uniform(-1, 1, 5000)
	whole = BiquadFilter("bandpass", 800.0, 4.0, SR).process(x, 0)
	pieces = _chunked(BiquadFilter("bandpass", 800.0, 4.0, SR), x, 512)
	assert np.allclose(whole, pieces)


def test_convolution_matches_full_linear_convolution():
	rng = np.random.default_rng(3)
	ir = rng.uniform(-1, 1, 300)
	x = rng.uniform(-1, 1, 2000)
	expected = np.convolve(x, ir)[: len(x)]
	whole = ConvolutionReverb(ir, SR, normalize=False).process(x, 0)
	pieces = _chunked(ConvolutionReverb(ir, SR, normalize=False), x, 128)
	assert np.allclose(whole, expected)
	assert np.allclose(pieces, expected)


def test_convolution_tail_continues_after_input_stops():
	reverb = ConvolutionReverb(np.ones(10), SR, normalize=False)
	first = reverb.process(np.array([1.0, 0.0, 0.0, 0.0]), 0)
	second = reverb.process(np.zeros(4), 4)
	assert np.allclose(first, [1.0, 1.0, 1.0, 1.0])
	assert np.allclose(second, [1.0, 1.0, 1.0, 1.0])
	reverb.reset()
	assert reverb.process(np.zeros(4), 8).tolist() == [0.0] * 4


def test_normalization_scale_follows_rms():
	ir = np.full(1000, 0.5)
	assert normalization_scale(ir, SR) == pytest.approx(10 ** (-58 / 20) / 0.5)
	assert normalization_scale(ir, SR // 2) == pytest.approx(2 * 10 ** (-58 / 20) / 0.5)
	assert normalization_scale(np.zeros(10), SR) == pytest.approx(10 ** (-58 / 20) / 0.000125)


def test_delay_echo_train():
	delay = FeedbackDelay(0.01, 0.5, 0.1, 1000)
	assert delay.delay_frames == 10
	x = np.zeros(60)
	x[0] = 1.0
	out = delay.process(x, 0)
	assert out[10] == 1.0 and out[20] == 0.5 and out[30] == 0.25 and out[40] == 0.125
	assert np.count_nonzero(out) == 5


@pytest.mark.parametrize("feedback", [0.0, 0.3, 0.7, 0.94])
def test_delay_feedback_decays_geometrically(feedback):
	delay = FeedbackDelay(0.02, feedback, 0.5, 1000)
	x = np.zeros(400)
	x[0] = 1.0
	out = delay.process(x, 0)
	echoes = out[20::20]
	for k, amp in enumerate(echoes):
		assert abs(amp) <= feedback ** k + 1e-12
	assert np.all(np.diff(np.abs(echoes)) <= 1e-12)


def test_delay_feedback_clamped_and_block_size_invariant():
	assert FeedbackDelay(0.25, 3.0, 1.5, SR).feedback == 0.95
	x = np.random.default_rng(1).uniform(-1, 1, 20000)
	whole = FeedbackDelay(0.013, 0.6, 0.1, SR).process(x, 0)
	pieces = _chunked(FeedbackDelay(0.013, 0.6, 0.1, SR), x, 1000)
	assert np.allclose(whole, pieces)


def test_delay_time_clamped_to_max_time():
	delay = FeedbackDelay(2.0, 0.5, 0.5, 1000)
	assert delay.delay_time == 0.5
	assert delay.delay_frames == 500


def _route(effects, cache=None):
	graph = SignalGraph(SR)
	source = graph.add(Impulse())
	routed = EffectsChain(SR, cache=cache).route(graph, source, graph.destination, effects, 0.0)
	return graph, routed


def test_route_without_settings_leaves_passthrough_to_caller():
	graph, routed = _route(None)
	assert routed is False
	assert graph.inputs_of(graph.destination) == []


def test_route_all_disabled_is_unity_dry_path():
	fx = EffectSettings(reverb=ReverbSettings(enabled=False))
	graph, routed = _route(fx)
	assert routed is True
	(dry,) = graph.inputs_of(graph.destination)
	assert isinstance(dry, GainStage) and dry.level == 1.0
	out = graph.render(0, 16)
	assert out[0] == 1.0 and np.count_nonzero(out) == 1


def test_route_builds_filter_delay_and_reverb_branches():
	fx = EffectSettings(
		filter=FilterSettings(enabled=True, type="highpass", frequency=500),
		reverb=ReverbSettings(enabled=True, mix=1.0, duration=0.1),
		delay=DelaySettings(enabled=True, mix=0.5, time=0.1, feedback=0.5),
	)
	cache = ImpulseResponseCache(rng=np.random.default_rng(0))
	graph, routed = _route(fx, cache)
	assert routed
	kinds = {type(s).__name__ for s in graph.stages}
	assert {"BiquadFilter", "FeedbackDelay", "ConvolutionReverb"} <= kinds
	names = sorted(s.name for s in graph.inputs_of(graph.destination))
	assert names == ["delay-wet", "dry", "reverb-wet"]
	dry = next(s for s in graph.inputs_of(graph.destination) if s.name == "dry")
	assert dry.level == pytest.approx(0.1)
	assert (SR, 0.1, 2.5) in cache
	assert np.all(np.isfinite(graph.render(0, 8192)))


def test_route_filter_feeds_every_branch():
	fx = EffectSettings(filter=FilterSettings(enabled=True), delay=DelaySettings(enabled=True, mix=0.3))
	graph, _ = _route(fx, ImpulseResponseCache())
	filt = next(s for s in graph.stages if isinstance(s, BiquadFilter))
	fed = [s for s in graph.stages if filt in graph.inputs_of(s)]
	assert sorted(s.name for s in fed) == ["delay", "dry", "reverb"]
