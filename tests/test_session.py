import numpy as np

from pitchtrainer.config import EngineConfig
from pitchtrainer.models import Constraints, FixedKey, OutcomeRecord, RandomKey, Scale, Settings, SubmitResult, UserData
from pitchtrainer.session import Trainer


class RecordingSink:
	def __init__(self):
		self.calls = []

	def play_chord(self, midis, duration, gains=None, delay=0.0):
		self.calls.append(("chord", list(midis), delay))

	def play_arpeggio(self, midis, note_duration, gains=None, delay=0.0):
		self.calls.append(("arpeggio", list(midis), delay))

	def stop_all(self):
		self.calls.append(("stop", [], 0.0))


def _config(tmp_path):
	return EngineConfig(data_dir=tmp_path)


def _trainer(tmp_path, constraints=None, sink=None, seed=0, logs=None):
	settings = Settings(constraints=constraints or Constraints(card=(3, 3), span=(0, 12), midi_low=48, midi_high=72))
	return Trainer(settings, logs=logs, sink=sink, config=_config(tmp_path), rng=np.random.default_rng(seed))


def _draw_until(trainer, shape, limit=5000):
	for _ in range(limit):
		trial = trainer.request_trial()
		if trial.shape == shape:
			return trial
		trainer.submit(" ".join(str(v) for v in trial.shape))
	raise AssertionError(f"never drew {shape}")


def test_correct_and_incorrect_guesses(tmp_path):
	trainer = _trainer(tmp_path)
	assert (0, 4, 7) in trainer.universe
	_draw_until(trainer, (0, 4, 7))
	res = trainer.submit("0 4 7")
	assert res.ok is True
	assert trainer.current.answered

	_draw_until(trainer, (0, 4, 7))
	res = trainer.submit("0 3 7")
	assert res.ok is False
	assert res.truth == (0, 4, 7)
	assert res.guess == (0, 3, 7)
	assert trainer.history[-1] == OutcomeRecord(shape=(0, 4, 7), guess=(0, 3, 7), correct=False)


def test_guess_is_order_and_format_normalized(tmp_path):
	trainer = _trainer(tmp_path)
	_draw_until(trainer, (0, 4, 7))
	assert trainer.submit("7, 4").ok is True


def test_pending_trial_is_returned_unchanged(tmp_path):
	trainer = _trainer(tmp_path)
	first = trainer.request_trial()
	assert trainer.request_trial() is first
	trainer.submit("0 1 2")
	second = trainer.request_trial()
	assert second is not first
	assert not second.answered


def test_unparseable_guess_keeps_trial_pending(tmp_path):
	trainer = _trainer(tmp_path)
	trainer.request_trial()
	res = trainer.submit("what?")
	assert res.ok is None
	assert not trainer.current.answered
	assert trainer.history == []
	# answering twice is not allowed
	trainer.submit("0 4 7")
	assert trainer.submit("0 4 7") is None


def test_submit_without_trial(tmp_path):
	assert _trainer(tmp_path).submit("0 4 7") is None


def test_empty_universe_gives_no_trial(tmp_path):
	trainer = _trainer(tmp_path, constraints=Constraints(card=(4, 3)))
	assert len(trainer.universe) == 0
	assert trainer.request_trial() is None
	assert trainer.current is None


def test_atonal_realization_stays_in_range(tmp_path):
	trainer = _trainer(tmp_path, seed=4)
	for _ in range(200):
		trial = trainer.request_trial()
		assert trial.midis == [trial.root + o for o in trial.shape]
		assert all(48 <= m <= 72 for m in trial.midis)
		assert trial.key_pc is None
		assert all(0.6 - 1e-9 <= g <= 1.2 + 1e-9 for g in trial.gains)
		trainer.submit("0")


def test_fixed_key_realization_uses_key_octaves(tmp_path):
	c = Constraints(card=(2, 3), span=(0, 12), midi_low=50, midi_high=70, tonality=FixedKey(key_pc=2), scale=Scale.MAJOR_DIATONIC)
	trainer = _trainer(tmp_path, constraints=c, seed=5)
	for _ in range(200):
		trial = trainer.request_trial()
		assert (trial.root - 2) % 12 == 0
		assert trial.key_pc == 2
		assert all(50 <= m <= 70 for m in trial.midis)
		trainer.submit("0")


def test_random_key_reports_root_pitch_class(tmp_path):
	c = Constraints(card=(2, 2), span=(0, 7), tonality=RandomKey())
	trainer = _trainer(tmp_path, constraints=c, seed=6)
	trial = trainer.request_trial()
	assert trial.key_pc == trial.root % 12


def test_stats_updated_on_submit(tmp_path):
	trainer = _trainer(tmp_path)
	for _ in range(10):
		_draw_until(trainer, (0, 4, 7))
		trainer.submit("0 4 7")
	st = trainer.store.get((0, 4, 7))
	assert st.correct_count == 10
	assert trainer.store.aggregate().mastered_count >= 1


def test_narrowing_constraints_keeps_progress(tmp_path):
	trainer = _trainer(tmp_path)
	for ok in [True] * 8 + [False] * 2:
		_draw_until(trainer, (0, 4, 7))
		trainer.submit("0 4 7" if ok else "0 3 7")
	before = list(trainer.store.get((0, 4, 7)).buffer)
	trainer.change_constraints(Constraints(card=(3, 3), span=(7, 7), midi_low=48, midi_high=72))
	assert len(trainer.universe) == 6
	st = trainer.store.get((0, 4, 7))
	assert list(st.buffer) == before
	assert st.correct_count >= 8
	# answered trial is dropped on a constraint change
	assert trainer.current is None


def test_pending_trial_survives_unrelated_change(tmp_path):
	trainer = _trainer(tmp_path)
	trial = _draw_until(trainer, (0, 4, 7))
	trainer.change_constraints(Constraints(card=(3, 3), span=(7, 7), midi_low=48, midi_high=72))
	assert trainer.current is trial
	trainer.change_constraints(Constraints(card=(3, 3), span=(12, 12), midi_low=48, midi_high=72))
	assert trainer.current is None


def test_history_is_bucketed_by_tonality(tmp_path):
	trainer = _trainer(tmp_path)
	trainer.request_trial()
	trainer.submit("0 4 7")
	assert len(trainer.logs["ATONAL"]) == 1
	trainer.change_constraints(Constraints(card=(3, 3), span=(0, 12), tonality=FixedKey(key_pc=0), scale=Scale.MAJOR_DIATONIC))
	assert trainer.history == []
	assert "major_diatonic" in trainer.logs


def test_load_user_rebuilds_from_their_log(tmp_path):
	trainer = _trainer(tmp_path)
	for _ in range(3):
		_draw_until(trainer, (0, 4, 7))
		trainer.submit("0 4 7")
	other = UserData(
		settings=Settings(constraints=Constraints(card=(3, 3), span=(0, 12))),
		logs={"ATONAL": [OutcomeRecord(shape=(0, 3, 7), guess=(0, 3, 7), correct=True)]},
	)
	trainer.load_user(other)
	assert trainer.current is None
	assert len(trainer.store.get((0, 4, 7))) == 0
	assert trainer.store.get((0, 3, 7)).correct_count == 1


def test_feedback_summary(tmp_path):
	trainer = _trainer(tmp_path)
	_draw_until(trainer, (0, 4, 7))
	fb = trainer.feedback(trainer.submit("0 4 7"))
	assert fb.ok is True
	assert fb.shape_correct >= 1
	assert fb.window == 10
	assert 0 <= fb.overall_accuracy <= 100
	assert fb.mastered.universe_size == 66
	assert trainer.feedback(SubmitResult(ok=None)) is None


def test_new_trial_plays_chord_atonal(tmp_path):
	sink = RecordingSink()
	trainer = _trainer(tmp_path, sink=sink)
	trial = trainer.request_trial()
	assert sink.calls == [("chord", trial.midis, 0.0)]


def test_fixed_key_plays_key_centre_once(tmp_path):
	sink = RecordingSink()
	c = Constraints(card=(3, 3), span=(0, 12), tonality=FixedKey(key_pc=0), scale=Scale.MAJOR_DIATONIC)
	trainer = _trainer(tmp_path, constraints=c, sink=sink)
	trainer.request_trial()
	assert [k for k, _, _ in sink.calls] == ["chord", "chord"]
	assert sink.calls[0][1] == [60, 64, 67, 72]
	assert sink.calls[1][2] > 0
	trainer.submit("0")
	sink.calls.clear()
	trial = trainer.request_trial()
	assert sink.calls == [("chord", trial.midis, 0.0)]


def test_replay_cycle_after_answer_atonal(tmp_path):
	sink = RecordingSink()
	trainer = _trainer(tmp_path, sink=sink)
	trainer.request_trial()
	assert trainer.replay() == "chord"
	trainer.submit("0 1 2")
	assert [trainer.replay() for _ in range(6)] == ["chord", "chord", "arpeggio"] * 2


def test_replay_cycle_tonal(tmp_path):
	sink = RecordingSink()
	c = Constraints(card=(3, 3), span=(0, 12), tonality=RandomKey())
	trainer = _trainer(tmp_path, constraints=c, sink=sink)
	trainer.request_trial()
	assert [trainer.replay() for _ in range(4)] == ["chord", "chord", "chord", "key"]
	trainer.submit("0")
	assert [trainer.replay() for _ in range(4)] == ["chord", "chord", "arpeggio", "key"]


def test_guess_voicing_keeps_most_notes(tmp_path):
	trainer = _trainer(tmp_path)
	trial = _draw_until(trainer, (0, 4, 7))
	voicing = trainer.guess_voicing((0, 3, 7))
	assert len(voicing) == 3
	assert all(48 <= m <= 72 for m in voicing)
	assert voicing == [trial.root + 0, trial.root + 3, trial.root + 7]
	assert trainer.play_guess((0, 3, 7)) == "chord"


def test_wide_shape_first_play_mutes_out_of_range_notes(tmp_path):
	sink = RecordingSink()
	c = Constraints(card=(2, 2), span=(12, 12), midi_low=60, midi_high=65)
	trainer = _trainer(tmp_path, constraints=c, sink=sink)
	trial = trainer.request_trial()
	assert trial.midis == [60, 72]
	assert sink.calls == [("chord", [60], 0.0)]
	assert trainer.replay() == "chord"
	assert sink.calls[-1] == ("chord", [60], 0.0)


def test_store_matches_universe_after_init(tmp_path):
	trainer = _trainer(tmp_path)
	assert trainer.store.universe is trainer.universe
	assert len(trainer.store) == 66
	assert trainer.store.aim == trainer.config.aim
