import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import requests
import mido
import io
import numpy as np
import numpy.typing as npt
import soundfile as sf
from loguru import logger

from .audio import SR, SynthSink
from .config import EngineConfig

# FluidR3Mono_GM soundfont (~14MB compressed SF3), has every General MIDI program
# SF3 is a compressed SF2 format that FluidSynth natively supports
DEFAULT_SF2_URL = "https://github.com/musescore/MuseScore/raw/2.3.2/share/sound/FluidR3Mono_GM.sf3"
DEFAULT_SF2_NAME = "FluidR3Mono_GM.sf3"

BUCKETS = ("low", "mid", "high")


class SoundfontUnavailable(RuntimeError):
	pass


class Voice(NamedTuple):
	program: int  # General MIDI program number
	low: int
	high: int
	gain: float


# Each section splits a chord over three voices by register
SECTIONS: Dict[str, Dict[str, Voice]] = {
	"piano": {
		"low": Voice(0, 21, 108, 1.0),
		"mid": Voice(0, 21, 108, 1.0),
		"high": Voice(0, 21, 108, 1.0),
	},
	"brass": {
		"low": Voice(57, 34, 70, 1.4),  # trombone
		"mid": Voice(57, 40, 78, 1.4),
		"high": Voice(56, 55, 96, 1.4),  # trumpet
	},
	"sax": {
		"low": Voice(67, 38, 65, 0.9),  # baritone
		"mid": Voice(66, 44, 74, 0.9),  # tenor
		"high": Voice(65, 52, 86, 0.9),  # alto
	},
	"clarinets": {
		"low": Voice(71, 38, 72, 1.1),
		"mid": Voice(71, 50, 88, 1.1),
		"high": Voice(71, 60, 98, 1.1),
	},
	"strings": {
		"low": Voice(42, 36, 64, 1.1),  # cello
		"mid": Voice(41, 55, 79, 1.1),  # viola
		"high": Voice(40, 55, 103, 1.1),  # violin
	},
}

# Voice assignment by chord size, lowest note first
DISTRIBUTIONS: Dict[int, List[str]] = {
	1: ["auto"],
	2: ["low", "high"],
	3: ["low", "mid", "high"],
	4: ["low", "low", "mid", "high"],
	5: ["low", "low", "mid", "high", "high"],
}


def _which(cmd: str) -> bool:
	return shutil.which(cmd) is not None


def route_voices(midis: Sequence[int], section: str) -> Optional[Dict[str, List[int]]]:
	"""Assign each note of a chord to a voice of the section.

	A note outside its planned voice's range moves to the nearest voice in
	that direction that can play it, or to the outermost voice.
	"""
	voices = SECTIONS[section]
	plan = DISTRIBUTIONS.get(len(midis))
	if plan is None:
		return None
	out: Dict[str, List[int]] = {b: [] for b in BUCKETS}
	for note, b in zip(sorted(midis), plan):
		if b == "auto":
			b = min(BUCKETS, key=lambda bb: abs(note - (voices[bb].low + voices[bb].high) / 2))
		if voices[b].low <= note <= voices[b].high:
			out[b].append(note)
			continue
		step = 1 if note > voices[b].high else -1
		idx = BUCKETS.index(b)
		while True:
			nxt = idx + step
			if nxt < 0 or nxt >= len(BUCKETS):
				out[BUCKETS[idx]].append(note)
				break
			cand = BUCKETS[nxt]
			if voices[cand].low <= note <= voices[cand].high:
				out[cand].append(note)
				break
			idx = nxt
	return out


def get_sf2_path(config: EngineConfig) -> Path:
	if config.sf2_path:
		return Path(config.sf2_path)
	return config.data_dir / "sf2" / DEFAULT_SF2_NAME


def ensure_sf2(config: EngineConfig) -> Path:
	p = get_sf2_path(config)
	if p.exists() or config.sf2_path:
		return p
	p.parent.mkdir(parents=True, exist_ok=True)
	try:
		response = requests.get(DEFAULT_SF2_URL, timeout=30)
		response.raise_for_status()
		p.write_bytes(response.content)
		logger.info(f"Downloaded soundfont to {p}")
	except requests.RequestException as e:
		logger.warning(f"Soundfont download failed: {e}")
	return p


def is_soundfont_available(config: EngineConfig) -> bool:
	"""Check if FluidSynth and a soundfont are available for rendering sections."""
	if not _which("fluidsynth"):
		return False
	return ensure_sf2(config).exists()


def write_midi(path: Path, midis: Sequence[int], section: str, arpeggio: bool, seconds: float, volume: float, gains: Optional[Sequence[float]] = None) -> None:
	"""Write a one-track MIDI file playing a chord, or an arpeggio of `seconds` per note."""
	mid = mido.MidiFile()
	trk = mido.MidiTrack()
	mid.tracks.append(trk)
	# 100 BPM: 1 beat = 0.6s
	trk.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(100), time=0))
	ticks = int(round(mid.ticks_per_beat * seconds / 0.6))
	routed = route_voices(midis, section) or {"mid": list(midis)}
	voices = SECTIONS[section]
	channel_of: Dict[int, int] = {}
	velocity_of: Dict[int, int] = {}
	order = sorted(midis)
	gain_of = dict(zip(midis, gains)) if gains is not None else {}
	for ch, bucket in enumerate(BUCKETS):
		trk.append(mido.Message("program_change", channel=ch, program=voices[bucket].program, time=0))
		for note in routed.get(bucket, []):
			channel_of[note] = ch
			g = float(gain_of.get(note, 1.0))
			# velocity 60..120 scaled by volume, voice gain and per-note gain
			velocity_of[note] = max(1, min(127, int((60 + 60 * volume) * voices[bucket].gain * g)))
	if arpeggio:
		for note in order:
			trk.append(mido.Message("note_on", channel=channel_of[note], note=note, velocity=velocity_of[note], time=0))
			trk.append(mido.Message("note_off", channel=channel_of[note], note=note, velocity=0, time=ticks))
	else:
		for note in order:
			trk.append(mido.Message("note_on", channel=channel_of[note], note=note, velocity=velocity_of[note], time=0))
		for i, note in enumerate(order):
			trk.append(mido.Message("note_off", channel=channel_of[note], note=note, velocity=0, time=ticks if i == 0 else 0))
	mid.save(path.as_posix())


def _trim_to_duration(wav: bytes, seconds: float) -> npt.NDArray[np.float32]:
	data, _sr = sf.read(io.BytesIO(wav), dtype="float32")
	if data.ndim == 2:
		data = data.mean(axis=1)
	return np.asarray(data[: int(SR * seconds)], dtype=np.float32)


def render_section(config: EngineConfig, midis: Sequence[int], section: str, arpeggio: bool, seconds: float, volume: float, gains: Optional[Sequence[float]] = None) -> npt.NDArray[np.float32]:
	"""Render notes with FluidSynth using the section's instruments."""
	sf2 = ensure_sf2(config)
	if not sf2.exists():
		raise SoundfontUnavailable(f"SoundFont not available. Set PITCHTRAINER_SF2_PATH or place one at {sf2}")
	if not _which("fluidsynth"):
		raise SoundfontUnavailable("fluidsynth not found. Install with: brew install fluidsynth")
	with tempfile.TemporaryDirectory() as td:
		dirp = Path(td)
		midp = dirp / "tmp.mid"
		wavp = dirp / "out.wav"
		write_midi(midp, midis, section, arpeggio, seconds, volume, gains)
		cmd = [
			"fluidsynth",
			"-g", "1.2",
			"-R", "0",
			"-C", "0",
			"-r", str(SR),
			"-F", wavp.as_posix(),
			sf2.as_posix(),
			midp.as_posix(),
		]
		proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
		if proc.returncode != 0 or not wavp.exists():
			raise SoundfontUnavailable(f"fluidsynth failed: {proc.stderr.decode(errors='ignore')}")
		total = seconds * (len(midis) if arpeggio else 1)
		return _trim_to_duration(wavp.read_bytes(), total + 0.3)


class SoundfontSink(SynthSink):
	"""AudioSink that queues calls and renders them through FluidSynth on mixdown."""

	def __init__(self, config: EngineConfig, section: str, volume: float = 1.0) -> None:
		super().__init__(volume)
		self.config = config
		self.section = section
		self.pending: List[Tuple[float, List[int], bool, float, Optional[List[float]]]] = []

	def play_chord(self, midis: Sequence[int], duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None:
		self.pending.append((delay, list(midis), False, duration, list(gains) if gains is not None else None))

	def play_arpeggio(self, midis: Sequence[int], note_duration: float, gains: Optional[Sequence[float]] = None, delay: float = 0.0) -> None:
		self.pending.append((delay, list(midis), True, note_duration, list(gains) if gains is not None else None))

	def stop_all(self) -> None:
		super().stop_all()
		self.pending = []

	def mixdown(self) -> npt.NDArray[np.float32]:
		"""Render queued calls. Raises SoundfontUnavailable when FluidSynth cannot run."""
		pending, self.pending = self.pending, []
		for delay, midis, arp, seconds, gains in pending:
			x = render_section(self.config, midis, self.section, arp, seconds, self.volume, gains)
			self.clips.append((int(delay * SR), x))
		return super().mixdown()
