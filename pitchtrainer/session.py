from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from .audio import AudioSink
from .config import EngineConfig, get_config
from .migration import reconcile
from .models import (
	Atonal,
	Constraints,
	FeedbackSummary,
	FixedKey,
	OutcomeRecord,
	RandomKey,
	Settings,
	Shape,
	SubmitResult,
	Trial,
	UserData,
)
from .selector import pick
from .shapes import parse_guess, shape_key
from .stats import StatsStore
from .theory import key_center_chord, octave_bounds
from .universe import Universe, generate


class Trainer:
	"""One learner's drill session: universe, statistics, history and the live trial.

	Trial slot lifecycle: no trial -> pending (awaiting an answer) -> answered;
	the next request after an answer starts a new pending trial.
	"""

	def __init__(
		self,
		settings: Optional[Settings] = None,
		logs: Optional[Dict[str, List[OutcomeRecord]]] = None,
		sink: Optional[AudioSink] = None,
		config: Optional[EngineConfig] = None,
		rng: Optional[np.random.Generator] = None,
	) -> None:
		self.config = config or get_config()
		self.settings = settings or Settings()
		self.logs: Dict[str, List[OutcomeRecord]] = logs if logs is not None else {}
		self.sink = sink
		self.rng = rng if rng is not None else np.random.default_rng()
		self.current: Optional[Trial] = None
		self.replay_unanswered = 0
		self.replay_chord = 0
		self.replay_guess = 0
		self._last_key_pc: Optional[int] = None
		self.universe: Universe
		self.store: StatsStore
		self._rebuild(carry=False)

	@property
	def constraints(self) -> Constraints:
		return self.settings.constraints

	@property
	def history(self) -> List[OutcomeRecord]:
		"""The outcome log for the current tonality bucket."""
		return self.logs.setdefault(self.constraints.log_tag, [])

	def _rebuild(self, carry: bool) -> None:
		cfg = self.config
		self.universe = generate(self.constraints)
		self.store = reconcile(
			self.universe,
			self.history,
			old=self.store if carry else None,
			window=cfg.window,
			aim=cfg.aim,
			sample_limit=cfg.sample_limit,
			sample_size=cfg.sample_size,
			refresh_every=cfg.refresh_every,
			rng=self.rng,
		)
		if self.current is not None and self.current.shape not in self.universe:
			self.current = None

	def change_settings(self, settings: Settings) -> None:
		"""Apply new settings; the universe is rebuilt only if the constraints changed."""
		old = self.constraints
		self.settings = settings
		if settings.constraints == old:
			return
		logger.info(f"Constraints changed: {old} -> {settings.constraints}")
		# stats only carry over within the same history bucket
		self._rebuild(carry=old.log_tag == settings.constraints.log_tag)
		if self.current is not None and self.current.answered:
			self.current = None

	def change_constraints(self, constraints: Constraints) -> None:
		self.change_settings(self.settings.model_copy(update={"constraints": constraints}))

	def load_user(self, data: UserData) -> None:
		"""Switch to another learner's settings and history; nothing carries over."""
		if self.sink is not None:
			self.sink.stop_all()
		self.settings = data.settings
		self.logs = data.logs
		self.current = None
		self._last_key_pc = None
		self._rebuild(carry=False)

	def snapshot(self) -> UserData:
		return UserData(settings=self.settings, logs=self.logs)

	# -- trials ---------------------------------------------------------------

	def _realize(self, shape: Shape) -> Optional[Trial]:
		c = self.constraints
		low_off, high_off = shape[0], shape[-1]
		tonality = c.tonality
		if isinstance(tonality, (Atonal, RandomKey)):
			root_low = c.midi_low - low_off
			root_high = c.midi_high - high_off
			if root_low > root_high:
				logger.warning(f"Shape {shape} spans more than the MIDI range; notes above {c.midi_high} will be muted")
				root_high = root_low
			root = int(self.rng.integers(root_low, root_high + 1))
			key_pc = root % 12 if isinstance(tonality, RandomKey) else None
		elif isinstance(tonality, FixedKey):
			z_min, z_max = octave_bounds(tonality.key_pc, low_off, high_off, c.midi_low, c.midi_high)
			if z_min > z_max:
				return None
			root = tonality.key_pc + 12 * int(self.rng.integers(z_min, z_max + 1))
			key_pc = tonality.key_pc
		else:
			raise TypeError(f"unknown tonality {tonality!r}")
		midis = [root + o for o in shape]
		noise = self.config.amp_noise
		gains = [float(0.9 + (self.rng.random() * 2 - 1) * noise) for _ in midis]
		return Trial(shape=shape, root=root, midis=midis, gains=gains, key_pc=key_pc)

	def request_trial(self) -> Optional[Trial]:
		"""Return the pending trial, or start a new one. None if the universe is empty."""
		if self.current is not None and not self.current.answered:
			return self.current
		self.current = None
		shape = pick(self.universe, self.store, self.settings.focus_ratio, self.rng)
		if shape is None:
			logger.debug("No trial available: empty universe")
			return None
		trial = self._realize(shape)
		if trial is None:
			return None
		self.current = trial
		self.replay_unanswered = 0
		self.replay_chord = 0
		self.replay_guess = 0
		self._play_new(trial)
		return trial

	def submit(self, raw_guess: Optional[str]) -> Optional[SubmitResult]:
		"""Score a guess for the pending trial.

		Returns None when there is no pending trial, and ok=None (trial still
		pending, nothing recorded) when the guess holds no numbers.
		"""
		cur = self.current
		if cur is None or cur.answered:
			return None
		guess = parse_guess(raw_guess, self.constraints.tonality)
		if guess is None:
			return SubmitResult(ok=None)
		truth = cur.shape
		ok = shape_key(guess) == shape_key(truth)
		cur.answered = True
		self.history.append(OutcomeRecord(shape=truth, guess=guess, correct=ok))
		self.store.record(truth, ok)
		return SubmitResult(ok=ok, truth=truth, guess=guess)

	def feedback(self, result: SubmitResult) -> Optional[FeedbackSummary]:
		if result.ok is None or result.truth is None or result.guess is None:
			return None
		log = self.history
		overall = int(round(sum(1 for r in log if r.correct) / len(log) * 100)) if log else 0
		return FeedbackSummary(
			ok=result.ok,
			truth=result.truth,
			guess=result.guess,
			shape_correct=self.store.get(result.truth).correct_count,
			window=self.config.window,
			min_accuracy=self.store.min_accuracy(),
			overall_accuracy=overall,
			mastered=self.store.aggregate(),
		)

	# -- playback -------------------------------------------------------------

	def _in_range(self, midis: Sequence[int]) -> List[int]:
		c = self.constraints
		return [m for m in midis if c.midi_low <= m <= c.midi_high]

	def _key_chord(self) -> List[int]:
		c = self.constraints
		key_pc = self.current.key_pc if self.current is not None else None
		if key_pc is None:
			return []
		return key_center_chord(key_pc, c.scale, c.midi_low, c.midi_high)

	def _chord(self, midis: Sequence[int], delay: float = 0.0) -> None:
		if self.sink is not None and self.current is not None:
			self.sink.play_chord(list(midis), self.config.duration, self.current.gains, delay)

	def _arpeggio(self, midis: Sequence[int]) -> None:
		if self.sink is not None and self.current is not None:
			self.sink.play_arpeggio(list(midis), self.config.arp_note_duration, self.current.gains)

	def _key_center(self) -> None:
		chord = self._key_chord()
		if self.sink is not None and chord:
			self.sink.play_chord(chord, self.config.key_duration)

	def _play_new(self, trial: Trial) -> None:
		tonality = self.constraints.tonality
		lead = self.config.key_duration + self.config.tonic_lead_time
		playable = self._in_range(trial.midis)
		if isinstance(tonality, RandomKey):
			self._key_center()
			self._chord(playable, delay=lead)
		elif isinstance(tonality, FixedKey) and self._last_key_pc != tonality.key_pc:
			self._key_center()
			self._last_key_pc = tonality.key_pc
			self._chord(playable, delay=lead)
		else:
			self._chord(playable)

	def _cycle(self, count: int, midis: Sequence[int]) -> str:
		"""Play step `count` of the post-answer cycle; returns what was played."""
		every = max(1, self.config.arp_every)
		if not self.constraints.is_tonal:
			if count % every == 0:
				self._arpeggio(midis)
				return "arpeggio"
			self._chord(midis)
			return "chord"
		pos = count % (every + 1)
		if pos == 0:
			self._key_center()
			return "key"
		if pos == every:
			self._arpeggio(midis)
			return "arpeggio"
		self._chord(midis)
		return "chord"

	def replay(self) -> Optional[str]:
		"""Play the current trial again.

		Before answering this is the chord, with every (arp_every + 1)-th replay
		giving the key centre instead in tonal modes. After answering it cycles
		through chords and arpeggios (and the key centre in tonal modes).
		"""
		cur = self.current
		if cur is None:
			return None
		playable = self._in_range(cur.midis)
		if not playable:
			return None
		if not cur.answered:
			self.replay_unanswered += 1
			if self.constraints.is_tonal and self.replay_unanswered % (max(1, self.config.arp_every) + 1) == 0:
				self._key_center()
				return "key"
			self._chord(playable)
			return "chord"
		self.replay_chord += 1
		return self._cycle(self.replay_chord, playable)

	def guess_voicing(self, guess: Sequence[int]) -> List[int]:
		"""Place a guess on the trial root, shifted by up to an octave to keep the most notes in range.

		Ties go to the placement whose mean is closest to the true chord's mean.
		"""
		cur = self.current
		if cur is None or not guess:
			return []
		raw = [cur.root + r for r in guess]
		mu_truth = sum(cur.midis) / len(cur.midis)
		best: List[int] = []
		best_dist = float("inf")
		for k in (-1, 0, 1):
			playable = self._in_range([m + 12 * k for m in raw])
			if not playable:
				continue
			dist = abs(mu_truth - sum(playable) / len(playable))
			if len(playable) > len(best) or (len(playable) == len(best) and dist < best_dist):
				best = playable
				best_dist = dist
		return sorted(best)

	def play_guess(self, guess: Sequence[int]) -> Optional[str]:
		cur = self.current
		best = self.guess_voicing(guess)
		if cur is None or not best:
			return None
		if not cur.answered:
			self._chord(best)
			return "chord"
		self.replay_guess += 1
		return self._cycle(self.replay_guess, best)
