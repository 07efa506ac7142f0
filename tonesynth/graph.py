"""Directed acyclic signal graph evaluated block by block.

Every stage receives the sum of its inputs for the current block and returns
its own output block. Stages with feedback keep it internal (see
``FeedbackDelay``), so the graph itself never contains a cycle.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from graphlib import TopologicalSorter
from typing import Dict, List, Optional, TypeVar

import numpy as np
import numpy.typing as npt

Signal = npt.NDArray[np.float64]
S = TypeVar("S", bound="Stage")


class Stage(ABC):
	"""One processing node."""

	name = "stage"

	@abstractmethod
	def process(self, block: Signal, offset: int) -> Signal:
		"""Process one block; ``offset`` is the absolute frame index of block[0]."""

	def reset(self) -> None:
		"""Clear internal state (filter memory, delay lines, tails)."""

	def __repr__(self) -> str:
		return f"<{type(self).__name__} {self.name}>"


class SumStage(Stage):
	name = "sum"

	def process(self, block: Signal, offset: int) -> Signal:
		return block


class GainStage(Stage):
	"""Constant gain applied from ``since`` (a frame index) onward; unity before."""

	name = "gain"

	def __init__(self, level: float, since: int = 0, name: str = "gain") -> None:
		self.name = name
		self.level = float(level)
		self.since = max(0, int(since))

	def process(self, block: Signal, offset: int) -> Signal:
		if offset >= self.since:
			return block * self.level
		out = block.copy()
		head = min(len(block), self.since - offset)
		out[head:] *= self.level
		return out


class SignalGraph:
	def __init__(self, sample_rate: int) -> None:
		self.sample_rate = sample_rate
		self.destination = SumStage()
		self._inputs: Dict[Stage, List[Stage]] = {self.destination: []}
		self._order: Optional[List[Stage]] = None

	def add(self, stage: S) -> S:
		self._inputs.setdefault(stage, [])
		self._order = None
		return stage

	def connect(self, source: Stage, target: S) -> S:
		"""Feed ``source`` into ``target``; returns ``target`` so calls can chain."""
		self.add(source)
		self.add(target)
		self._inputs[target].append(source)
		self._order = None
		return target

	@property
	def stages(self) -> List[Stage]:
		return list(self._inputs)

	def inputs_of(self, stage: Stage) -> List[Stage]:
		return list(self._inputs.get(stage, []))

	def order(self) -> List[Stage]:
		if self._order is None:
			# raises graphlib.CycleError on a literal cycle
			self._order = list(TopologicalSorter(self._inputs).static_order())
		return self._order

	def render(self, offset: int, frames: int) -> Signal:
		outputs: Dict[Stage, Signal] = {}
		for stage in self.order():
			block = np.zeros(frames, dtype=np.float64)
			for source in self._inputs[stage]:
				block += outputs[source]
			outputs[stage] = stage.process(block, offset)
		return outputs[self.destination]

	def reset(self) -> None:
		for stage in self._inputs:
			stage.reset()


def seconds_to_frame(seconds: float, sample_rate: int) -> int:
	"""First frame at or after ``seconds``, tolerant of float noise in seconds * rate."""
	return int(math.ceil(round(max(0.0, seconds) * sample_rate, 6)))
