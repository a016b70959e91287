from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from .models import Atonal, Shape, Tonality

_TOKEN_SPLIT = re.compile(r"[\s,]+")
_MARK_TOKENS = re.compile(r"\d+|\^")


def shape_key(shape: Iterable[int]) -> Tuple[int, ...]:
	"""Canonical lookup key for a shape: the tuple of its offsets."""
	return tuple(int(v) for v in shape)


def parse_guess(text: Optional[str], tonality: Tonality) -> Optional[Shape]:
	"""Normalize a typed guess into a sorted, de-duplicated shape.

	Commas count as whitespace and tokens that are not integers are dropped.
	Returns None when nothing usable was typed. In atonal mode shapes are
	offsets from the lowest note, so a missing leading 0 is implied.
	"""
	nums: List[int] = []
	for tok in _TOKEN_SPLIT.split((text or "").strip()):
		if not tok:
			continue
		try:
			nums.append(int(tok))
		except ValueError:
			continue
	if not nums:
		return None
	if isinstance(tonality, Atonal) and nums[0] != 0:
		nums.insert(0, 0)
	return tuple(sorted(set(nums)))


def expand_octave_marks(text: str) -> str:
	"""Rewrite typed offsets so each one lies above its predecessor.

	A number not above the previous one is raised by octaves until it is, and
	every ``^`` adds one more octave to the number that follows it:
	"0 4 ^7" -> "0 4 19", "7 0 4" -> "7 12 16".
	"""
	tokens = _MARK_TOKENS.findall(text)
	if not tokens:
		return text
	result: List[int] = []
	pending = 0
	for tok in tokens:
		if tok == "^":
			pending += 1
			continue
		n = int(tok)
		if result:
			while n <= result[-1]:
				n += 12
		n += 12 * pending
		pending = 0
		result.append(n)
	return " ".join(str(n) for n in result)
