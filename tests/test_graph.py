from graphlib import CycleError

import numpy as np
import pytest

from tonesynth.graph import GainStage, SignalGraph, Stage, seconds_to_frame


class Ones(Stage):
	name = "ones"

	def process(self, block, offset):
		return np.ones(len(block))


def test_render_sums_inputs_into_destination():
	graph = SignalGraph(100)
	src = graph.add(Ones())
	a = graph.connect(src, GainStage(0.5))
	b = graph.connect(src, GainStage(0.25))
	graph.connect(a, graph.destination)
	graph.connect(b, graph.destination)
	out = graph.render(0, 8)
	assert np.allclose(out, 0.75)
	order = graph.order()
	assert order.index(src) < order.index(a) < order.index(graph.destination)


def test_gain_applies_from_since_frame():
	gain = GainStage(0.2, since=5)
	out = gain.process(np.ones(4), offset=3)
	assert np.allclose(out, [1.0, 1.0, 0.2, 0.2])
	assert np.allclose(gain.process(np.ones(2), offset=10), 0.2)
	assert np.allclose(gain.process(np.ones(2), offset=0), 1.0)


def test_literal_cycle_is_rejected():
	graph = SignalGraph(100)
	a = graph.add(GainStage(1.0))
	b = graph.connect(a, GainStage(1.0))
	graph.connect(b, a)
	with pytest.raises(CycleError):
		graph.render(0, 4)


def test_seconds_to_frame_ignores_float_noise():
	assert seconds_to_frame(0.05, 44100) == 2205
	assert seconds_to_frame(0.3, 44100) == 13230
	assert seconds_to_frame(1.0 / 44100 * 0.5, 44100) == 1
	assert seconds_to_frame(-1.0, 44100) == 0
