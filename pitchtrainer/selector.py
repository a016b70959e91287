from __future__ import annotations

from typing import Optional

import numpy as np
import numpy.typing as npt

from .models import Shape
from .stats import StatsStore
from .universe import Universe

JITTER = 1e-12


def weights(store: StatsStore, rng: np.random.Generator, aim: Optional[float] = None) -> npt.NDArray[np.float64]:
	"""Per-shape weight: shortfall from the aim, plus a tiny jitter to break ties.

	The aim defaults to the store's, so a shape with weight 0 is one the
	aggregate counts as mastered.
	"""
	target = store.aim if aim is None else aim
	w = np.maximum(0.0, target - store.accuracies())
	return w + rng.random(len(w)) * JITTER


def pick(
	universe: Universe,
	store: StatsStore,
	focus_ratio: float,
	rng: np.random.Generator,
	aim: Optional[float] = None,
) -> Optional[Shape]:
	"""Choose the next shape to drill.

	With probability `focus_ratio` shapes are drawn in proportion to how far
	they are below the aim; otherwise, or when everything is at the aim, the
	draw is uniform.
	"""
	n = len(universe)
	if n == 0:
		return None
	w = weights(store, rng, aim)
	total = float(np.sum(w))
	if rng.random() < focus_ratio:
		if total <= JITTER:
			return universe[int(rng.integers(n))]
		r = rng.random() * total
		idx = int(np.searchsorted(np.cumsum(w), r, side="left"))
		return universe[min(idx, n - 1)]
	return universe[int(rng.integers(n))]
