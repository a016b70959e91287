SR = 44100

import io
from typing import List, Optional, Protocol, Sequence, Tuple, cast
import numpy as np
import numpy.typing as npt
import soundfile as sf

from .theory import midi_to_freq

HARMONICS = 11
H_EXP = 1.8
TARGET_PEAK = 0.65
MAX_PEAK_SCALE = 0.35


class AudioSink(Protocol):
	"""Playback capability handed to the trainer. Calls must return immediately."""

	def play_chord(self, midis: Sequence[int], duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None: ...

	def play_arpeggio(self, midis: Sequence[int], note_duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None: ...

	def stop_all(self) -> None: ...


def harmonic_sum(n: int = HARMONICS) -> float:
	return float(sum(1.0 / h ** H_EXP for h in range(1, n + 1)))


def partials(freq: float, dur: float) -> npt.NDArray[np.float32]:
	"""Sum of the first HARMONICS sine partials of `freq` with 1/h^H_EXP amplitudes."""
	t = np.linspace(0.0, dur, int(SR * dur), endpoint=False, dtype=np.float32)
	x = np.zeros_like(t)
	nyquist = SR / 2.0
	for h in range(1, HARMONICS + 1):
		if freq * h >= nyquist:
			break
		x += (np.sin(2.0 * np.pi * freq * h * t) / h ** H_EXP).astype(np.float32)
	return x


def adsr(n: int, attack: float, decay: float, sustain: float, release: float) -> npt.NDArray[np.float32]:
	"""Linear ADSR envelope over n samples; times in seconds."""
	env = np.full(n, sustain, dtype=np.float32)
	a = min(int(attack * SR), n)
	d = min(int(decay * SR), n - a)
	r = min(int(release * SR), n - a - d)
	if a > 0:
		env[:a] = np.linspace(0.0, 1.0, a, endpoint=False, dtype=np.float32)
	if d > 0:
		env[a:a + d] = np.linspace(1.0, sustain, d, endpoint=False, dtype=np.float32)
	if r > 0:
		env[n - r:] = np.linspace(sustain, 0.0, r, endpoint=True, dtype=np.float32)
	return env


def _gain(gains: Optional[Sequence[float]], i: int) -> float:
	if gains is None or i >= len(gains):
		return 1.0
	return float(gains[i])


def chord(midis: Sequence[int], dur: float, gains: Optional[Sequence[float]] = None) -> npt.NDArray[np.float32]:
	"""All notes sounding together under one shared envelope."""
	n = int(SR * dur)
	if not midis:
		return np.zeros(n, dtype=np.float32)
	x = np.zeros(n, dtype=np.float32)
	for i, m in enumerate(midis):
		x += partials(midi_to_freq(m), dur) * _gain(gains, i)
	peak = min(MAX_PEAK_SCALE, TARGET_PEAK / (harmonic_sum() * max(1, len(midis))))
	y = x * adsr(n, 0.02, 0.15, 0.75, 0.12) * peak
	return cast(npt.NDArray[np.float32], y.astype(np.float32))


def arpeggio(midis: Sequence[int], note_dur: float, gains: Optional[Sequence[float]] = None) -> npt.NDArray[np.float32]:
	"""Notes one after another, each with an envelope scaled to the note length."""
	parts: List[npt.NDArray[np.float32]] = []
	peak = min(MAX_PEAK_SCALE, TARGET_PEAK / harmonic_sum())
	edge = note_dur * 0.25
	for i, m in enumerate(midis):
		n = int(SR * note_dur)
		env = adsr(n, min(0.02, edge), min(0.08, edge), 0.75, min(0.06, edge))
		parts.append((partials(midi_to_freq(m), note_dur) * env * _gain(gains, i) * peak).astype(np.float32))
	if not parts:
		return np.zeros(0, dtype=np.float32)
	return np.concatenate(parts)


class SynthSink:
	"""AudioSink that renders every call into a timeline of (start_sample, samples) clips."""

	def __init__(self, volume: float = 1.0) -> None:
		self.volume = volume
		self.clips: List[Tuple[int, npt.NDArray[np.float32]]] = []

	def play_chord(self, midis: Sequence[int], duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None:
		self.clips.append((int(delay * SR), chord(midis, duration, gains) * self.volume))

	def play_arpeggio(self, midis: Sequence[int], note_duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None:
		self.clips.append((int(delay * SR), arpeggio(midis, note_duration, gains) * self.volume))

	def stop_all(self) -> None:
		self.clips = []

	def mixdown(self) -> npt.NDArray[np.float32]:
		"""Mix all clips into one buffer and clear the timeline."""
		if not self.clips:
			return np.zeros(0, dtype=np.float32)
		length = max(start + len(x) for start, x in self.clips)
		out = np.zeros(length, dtype=np.float32)
		for start, x in self.clips:
			out[start:start + len(x)] += x
		self.clips = []
		max_abs = float(np.max(np.abs(out))) if out.size else 0.0
		if max_abs > 1.0:
			out = (out / max_abs).astype(np.float32)
		return out


def wav_bytes(x: npt.NDArray[np.float32]) -> bytes:
	buf = io.BytesIO()
	sf.write(buf, x, SR, format="WAV")
	return buf.getvalue()
