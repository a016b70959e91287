from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence

from loguru import logger

from .models import Atonal, Constraints, FixedKey, RandomKey, Shape
from .shapes import shape_key
from .theory import SCALES, fits_in_key, restricts_pitch_classes


class Universe:
	"""Immutable, ordered collection of shapes with constant-time index lookup."""

	def __init__(self, shapes: Sequence[Shape]) -> None:
		self._shapes: List[Shape] = [shape_key(s) for s in shapes]
		self._index: Dict[Shape, int] = {}
		for i, s in enumerate(self._shapes):
			self._index.setdefault(s, i)

	def __len__(self) -> int:
		return len(self._shapes)

	def __iter__(self) -> Iterator[Shape]:
		return iter(self._shapes)

	def __getitem__(self, i: int) -> Shape:
		return self._shapes[i]

	def __contains__(self, shape: object) -> bool:
		return isinstance(shape, (tuple, list)) and shape_key(shape) in self._index

	def __eq__(self, other: object) -> bool:
		return isinstance(other, Universe) and self._shapes == other._shapes

	def __repr__(self) -> str:
		return f"Universe(size={len(self._shapes)})"

	def index_of(self, shape: Sequence[int]) -> Optional[int]:
		return self._index.get(shape_key(shape))

	@property
	def shapes(self) -> List[Shape]:
		return list(self._shapes)


def increasing_sequences(length: int, top: int) -> Iterator[Shape]:
	"""Yield strictly increasing sequences (0, a1, ..., a_{length-1}) with a_i <= top.

	Depth-first over an explicit stack: ``seq`` holds the chosen prefix and
	``cursor[i]`` the next candidate for position ``i + 1``. Output is in
	lexicographic order.
	"""
	if length < 1:
		return
	if length == 1:
		yield (0,)
		return
	seq = [0]
	cursor = [1]
	while cursor:
		v = cursor[-1]
		slots = length - len(seq)
		# not enough room left below `top` for the remaining slots
		if v + slots - 1 > top:
			cursor.pop()
			if cursor:
				seq.pop()
				cursor[-1] += 1
			continue
		if slots == 1:
			yield tuple(seq) + (v,)
			cursor[-1] += 1
		else:
			seq.append(v)
			cursor.append(v + 1)


def base_shapes(card_min: int, card_max: int, span_min: int, span_max: int) -> Iterator[Shape]:
	"""Untransposed shapes by ascending cardinality. Single notes ignore the span."""
	for length in range(max(1, card_min), card_max + 1):
		for seq in increasing_sequences(length, span_max):
			if length == 1 or span_min <= seq[-1] <= span_max:
				yield seq


def _transposed(base: Sequence[Shape], c: Constraints) -> Iterator[Shape]:
	allowed = SCALES[c.scale].allowed_pcs
	restrict = restricts_pitch_classes(c.scale)
	for rel in base:
		for r in range(12):
			rel2 = tuple(v + r for v in rel)
			if restrict and not all(v % 12 in allowed for v in rel2):
				continue
			yield rel2


def generate(c: Constraints) -> Universe:
	"""Build the universe of shapes valid under the constraints."""
	card_min, card_max = c.card
	span_min, span_max = c.span
	base = list(base_shapes(card_min, card_max, span_min, span_max))

	tonality = c.tonality
	if isinstance(tonality, Atonal):
		shapes = base
	elif isinstance(tonality, RandomKey):
		shapes = list(_transposed(base, c))
	elif isinstance(tonality, FixedKey):
		shapes = [
			rel for rel in _transposed(base, c)
			if fits_in_key(rel, tonality.key_pc, c.midi_low, c.midi_high)
		]
	else:
		raise TypeError(f"unknown tonality {tonality!r}")

	logger.debug(f"Generated universe: {len(shapes)} shapes ({tonality.kind}, card={c.card}, span={c.span})")
	return Universe(shapes)
