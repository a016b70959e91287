from __future__ import annotations

import math
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from .models import Atonal, Constraints, FixedKey, RandomKey, Scale, Tonality

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

A4_MIDI = 69
A4_FREQ = 440.0

MIDI_ABS_LOW = 20
MIDI_ABS_HIGH = 100
MAX_CARDINALITY = 5

KEY_TO_PC = {name: pc for pc, name in enumerate(NOTE_NAMES)}


class ScaleInfo(NamedTuple):
	tonic_chord: Tuple[int, ...]
	allowed_pcs: FrozenSet[int]


CHROMATIC = frozenset(range(12))

SCALES: Dict[Scale, ScaleInfo] = {
	Scale.ROOT: ScaleInfo((0,), CHROMATIC),
	Scale.MAJOR_DIATONIC: ScaleInfo((0, 4, 7, 12), frozenset({0, 2, 4, 5, 7, 9, 11})),
	Scale.MINOR_DIATONIC: ScaleInfo((0, 3, 7, 12), frozenset({0, 2, 3, 5, 7, 8, 10})),
	Scale.MAJOR_CHROMATIC: ScaleInfo((0, 4, 7, 12), CHROMATIC),
	Scale.MINOR_CHROMATIC: ScaleInfo((0, 3, 7, 12), CHROMATIC),
}


def midi_to_freq(m: int) -> float:
	return float(A4_FREQ * (2.0 ** ((m - A4_MIDI) / 12.0)))


def midi_to_note(m: int) -> str:
	return NOTE_NAMES[m % 12] + str(m // 12 - 1)


def restricts_pitch_classes(scale: Scale) -> bool:
	return len(SCALES[scale].allowed_pcs) != 12


def tonality_from_key_name(name: str) -> Tonality:
	"""Map a key selector value ("atonal", "random" or a note name) to a tonality."""
	if name == "atonal":
		return Atonal()
	if name == "random":
		return RandomKey()
	return FixedKey(key_pc=KEY_TO_PC[name])


def key_name(tonality: Tonality) -> str:
	if isinstance(tonality, Atonal):
		return "atonal"
	if isinstance(tonality, RandomKey):
		return "random"
	if isinstance(tonality, FixedKey):
		return NOTE_NAMES[tonality.key_pc]
	raise TypeError(f"unknown tonality {tonality!r}")


def octave_bounds(key_pc: int, low_off: int, high_off: int, midi_low: int, midi_high: int) -> Tuple[int, int]:
	"""Range of octaves z such that key_pc + 12*z + offsets all lie in [midi_low, midi_high].

	The range is empty when the first value exceeds the second.
	"""
	z_min = math.ceil((midi_low - (key_pc + low_off)) / 12)
	z_max = math.floor((midi_high - (key_pc + high_off)) / 12)
	return z_min, z_max


def fits_in_key(shape: Tuple[int, ...], key_pc: int, midi_low: int, midi_high: int) -> bool:
	z_min, z_max = octave_bounds(key_pc, shape[0], shape[-1], midi_low, midi_high)
	return z_min <= z_max


def key_center_chord(key_pc: int, scale: Scale, midi_low: int, midi_high: int) -> List[int]:
	"""Tonic chord of the key placed near the middle of the playable range."""
	mid = int(math.floor((midi_low + midi_high) / 2 + 0.5))
	tonic = mid + (key_pc - mid % 12) % 12
	if tonic < midi_low:
		tonic += 12
	if tonic > midi_high:
		tonic -= 12
	return [tonic + n for n in SCALES[scale].tonic_chord]


def option_ranges(c: Constraints) -> Dict[str, Tuple[int, int]]:
	"""Inclusive option ranges a settings form may offer given the current constraints."""
	min_card = 1 if c.is_tonal else 2
	card_min, card_max = c.card
	span_min, span_max = c.span
	return {
		"card_min": (min_card, min(MAX_CARDINALITY, card_max)),
		"card_max": (max(min_card, card_min), min(MAX_CARDINALITY, span_max + 1)),
		"span_min": (0, span_max),
		"span_max": (max(card_max - 1, 0), c.midi_high - c.midi_low),
		"midi_low": (MIDI_ABS_LOW, c.midi_high - span_max),
		"midi_high": (c.midi_low + span_max, MIDI_ABS_HIGH),
	}


def format_shape(shape: Optional[Tuple[int, ...]]) -> str:
	if shape is None:
		return "()"
	return "(" + ", ".join(str(v) for v in shape) + ")"
