from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

from .models import AggregateStats, Shape
from .universe import Universe

# Accuracy comparisons are done on counts; this absorbs aim * window rounding.
_EPS = 1e-9


class ShapeStats:
	"""Rolling window of the last `window` outcomes (1 = correct) for one shape."""

	def __init__(self, window: int, outcomes: Iterable[int] = ()) -> None:
		self.window = window
		self.buffer: Deque[int] = deque(maxlen=window)
		self.correct_count = 0
		for bit in outcomes:
			self.push(bool(bit))

	def __len__(self) -> int:
		return len(self.buffer)

	@property
	def full(self) -> bool:
		return len(self.buffer) >= self.window

	@property
	def accuracy(self) -> float:
		return self.correct_count / float(self.window)

	def push(self, correct: bool) -> None:
		"""Append the newest outcome, evicting the oldest once the window is full."""
		if len(self.buffer) == self.window:
			self.correct_count -= self.buffer[0]
		bit = 1 if correct else 0
		self.buffer.append(bit)
		self.correct_count += bit

	def prepend(self, correct: bool) -> bool:
		"""Insert an outcome older than everything held. No-op when full."""
		if self.full:
			return False
		bit = 1 if correct else 0
		self.buffer.appendleft(bit)
		self.correct_count += bit
		return True


class _ExactTally:
	approximate = False

	def count(self, store: "StatsStore") -> int:
		return int(np.count_nonzero(store.mastered_mask()))

	def on_answer(self, store: "StatsStore", answers: int) -> Optional[int]:
		return None


class _SampledTally:
	approximate = True

	def __init__(self, sample_size: int, refresh_every: int) -> None:
		self.sample_size = sample_size
		self.refresh_every = refresh_every

	def count(self, store: "StatsStore") -> int:
		n = len(store.universe)
		k = min(self.sample_size, n)
		if k == 0:
			return 0
		idx = store.rng.integers(0, n, size=k)
		hits = int(np.count_nonzero(store.mastered_mask()[idx]))
		return int(round(hits / k * n))

	def on_answer(self, store: "StatsStore", answers: int) -> Optional[int]:
		# resample periodically so the incremental estimate cannot drift far
		if answers % self.refresh_every == 0:
			return self.count(store)
		return None


class StatsStore:
	"""Per-shape rolling statistics over one universe, plus the mastered-count aggregate.

	Counts are mirrored in a numpy array indexed like the universe so the
	selector and the aggregate can work on all shapes at once. Universes up
	to `sample_limit` shapes are tallied exactly, larger ones by sampling
	`sample_size` indices.
	"""

	def __init__(
		self,
		universe: Universe,
		window: int = 10,
		aim: float = 0.8,
		sample_limit: int = 150_000,
		sample_size: int = 2_000,
		refresh_every: int = 500,
		rng: Optional[np.random.Generator] = None,
		buffers: Optional[Mapping[Shape, Sequence[int]]] = None,
	) -> None:
		self.universe = universe
		self.window = window
		self.aim = aim
		self.rng = rng if rng is not None else np.random.default_rng()
		self._stats: Dict[int, ShapeStats] = {}
		self._correct: npt.NDArray[np.int32] = np.zeros(len(universe), dtype=np.int32)
		self._answers = 0
		if len(universe) <= sample_limit:
			self._tally: Union[_ExactTally, _SampledTally] = _ExactTally()
		else:
			self._tally = _SampledTally(sample_size, refresh_every)
		for shape, outcomes in (buffers or {}).items():
			idx = universe.index_of(shape)
			if idx is None:
				continue
			st = ShapeStats(window, list(outcomes)[-window:])
			self._stats[idx] = st
			self._correct[idx] = st.correct_count
		self._mastered = 0
		self.refresh()

	def __len__(self) -> int:
		return len(self.universe)

	@property
	def is_approximate(self) -> bool:
		return self._tally.approximate

	def _is_mastered(self, correct: int) -> bool:
		return correct >= self.aim * self.window - _EPS

	def mastered_mask(self) -> npt.NDArray[np.bool_]:
		return self._correct >= self.aim * self.window - _EPS

	def accuracies(self) -> npt.NDArray[np.float64]:
		return self._correct / float(self.window)

	def min_accuracy(self) -> float:
		if len(self.universe) == 0:
			return 1.0
		return float(np.min(self.accuracies()))

	def get(self, shape: Sequence[int]) -> ShapeStats:
		"""Stats for a shape, created empty on first access.

		Shapes outside the universe get a detached, empty instance.
		"""
		idx = self.universe.index_of(shape)
		if idx is None:
			return ShapeStats(self.window)
		st = self._stats.get(idx)
		if st is None:
			st = self._stats[idx] = ShapeStats(self.window)
		return st

	def items(self) -> Iterator[Tuple[Shape, ShapeStats]]:
		for idx, st in self._stats.items():
			yield self.universe[idx], st

	def record(self, shape: Sequence[int], correct: bool) -> bool:
		"""Add an outcome for a shape. Returns False if the shape is not in the universe."""
		self._answers += 1
		idx = self.universe.index_of(shape)
		if idx is not None:
			st = self.get(shape)
			was = self._is_mastered(st.correct_count)
			st.push(correct)
			self._correct[idx] = st.correct_count
			now = self._is_mastered(st.correct_count)
			if now and not was:
				self._mastered += 1
			elif was and not now:
				self._mastered -= 1
			self._clamp()
		fresh = self._tally.on_answer(self, self._answers)
		if fresh is not None:
			self._mastered = fresh
			self._clamp()
		return idx is not None

	def refresh(self) -> None:
		"""Recompute the mastered count from scratch (exactly or from a new sample)."""
		self._mastered = self._tally.count(self)
		self._clamp()

	def _clamp(self) -> None:
		self._mastered = max(0, min(self._mastered, len(self.universe)))

	def aggregate(self) -> AggregateStats:
		return AggregateStats(
			mastered_count=self._mastered,
			universe_size=len(self.universe),
			is_approximate=self.is_approximate,
		)
