from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Optional, Sequence

import numpy as np
from loguru import logger

from .models import OutcomeRecord, Shape
from .shapes import shape_key
from .stats import StatsStore
from .universe import Universe


def reconcile(
	universe: Universe,
	history: Sequence[OutcomeRecord],
	old: Optional[StatsStore] = None,
	window: int = 10,
	aim: float = 0.8,
	sample_limit: int = 150_000,
	sample_size: int = 2_000,
	refresh_every: int = 500,
	rng: Optional[np.random.Generator] = None,
) -> StatsStore:
	"""Build the stats store for a new universe.

	Shapes still present keep their rolling buffer from `old`. Any buffer
	shorter than the window is topped up from `history`, read newest-first:
	the first len(buffer) matches for a shape are the outcomes the buffer
	already holds and are skipped, older ones go in front. Shapes that left
	the universe are dropped and history entries for unknown shapes ignored.
	"""
	buffers: Dict[Shape, Deque[int]] = {}
	carried = 0
	if old is not None:
		for shape, st in old.items():
			if shape not in universe or len(st) == 0:
				continue
			buffers[shape] = deque(list(st.buffer)[-window:])
			carried += 1

	skip: Dict[Shape, int] = {shape: len(buf) for shape, buf in buffers.items()}
	remaining = len(universe) - sum(1 for buf in buffers.values() if len(buf) >= window)
	backfilled = 0
	for entry in reversed(history):
		if remaining <= 0:
			break
		key = shape_key(entry.shape)
		if key not in universe:
			continue
		buf = buffers.get(key)
		if buf is None:
			buf = buffers[key] = deque()
		if len(buf) >= window:
			continue
		if skip.get(key, 0) > 0:
			skip[key] -= 1
			continue
		buf.appendleft(1 if entry.correct else 0)
		backfilled += 1
		if len(buf) >= window:
			remaining -= 1

	store = StatsStore(
		universe,
		window=window,
		aim=aim,
		sample_limit=sample_limit,
		sample_size=sample_size,
		refresh_every=refresh_every,
		rng=rng,
		buffers=buffers,
	)
	logger.info(
		f"Reconciled stats: {len(universe)} shapes, {carried} carried over, "
		f"{backfilled} outcomes backfilled from {len(history)} log entries"
	)
	return store
