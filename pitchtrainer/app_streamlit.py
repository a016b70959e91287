import streamlit as st
import pandas as pd
import altair as alt
from typing import Any, List

from pitchtrainer.audio import SynthSink, wav_bytes
from pitchtrainer.config import get_config
from pitchtrainer.logging_utils import setup_logging
from pitchtrainer.models import Constraints, Scale, Settings
from pitchtrainer.session import Trainer
from pitchtrainer.shapes import expand_octave_marks
from pitchtrainer.soundfont import SoundfontSink, SoundfontUnavailable, is_soundfont_available
from pitchtrainer.storage import GUEST, last_user, list_users, load_user, save_user
from pitchtrainer.theory import NOTE_NAMES, format_shape, key_name, midi_to_note, option_ranges, tonality_from_key_name


st.set_page_config(page_title="Pitch-Set Trainer", page_icon=None, layout="centered")

KEY_OPTIONS = ["atonal", "random"] + NOTE_NAMES
INSTRUMENTS = ["synth", "piano", "brass", "sax", "clarinets", "strings"]


def _make_sink(s: Settings) -> Any:
	config = get_config()
	if s.instrument != "synth" and is_soundfont_available(config):
		return SoundfontSink(config, s.instrument, volume=s.volume)
	return SynthSink(volume=s.volume)


def get_state() -> Any:
	if "trainer" not in st.session_state:
		setup_logging(get_config())
		user = last_user()
		data = load_user(user)
		st.session_state.user = user
		st.session_state.trainer = Trainer(data.settings, data.logs, sink=_make_sink(data.settings))
	if "feedback" not in st.session_state:
		st.session_state.feedback = None  # {"correct": bool, "text": str}
	if "audio" not in st.session_state:
		st.session_state.audio = None
	return st.session_state


def _range_select(label: str, bounds: Any, value: int, fmt: Any = str) -> int:
	lo, hi = bounds
	options: List[int] = list(range(lo, hi + 1)) or [value]
	if value not in options:
		value = min(max(value, options[0]), options[-1])
	return int(st.sidebar.selectbox(label, options, index=options.index(value), format_func=fmt))


def sidebar_controls(s: Settings) -> Settings:
	st.sidebar.header("Settings")
	c = s.constraints
	key_str = st.sidebar.selectbox("Key", KEY_OPTIONS, index=KEY_OPTIONS.index(key_name(c.tonality)))
	scales = [sc.value for sc in Scale]
	scale_str = st.sidebar.selectbox("Tonality", scales, index=scales.index(c.scale.value))
	ranges = option_ranges(c)
	card_min = _range_select("Notes (min)", ranges["card_min"], c.card[0])
	card_max = _range_select("Notes (max)", ranges["card_max"], c.card[1])
	span_min = _range_select("Span (min)", ranges["span_min"], c.span[0])
	span_max = _range_select("Span (max)", ranges["span_max"], c.span[1])
	midi_low = _range_select("Lowest note", ranges["midi_low"], c.midi_low, midi_to_note)
	midi_high = _range_select("Highest note", ranges["midi_high"], c.midi_high, midi_to_note)
	focus = st.sidebar.slider("Focus on weak sets", min_value=0.0, max_value=1.0, value=s.focus_ratio, step=0.05)
	instrument = st.sidebar.selectbox("Instrument", INSTRUMENTS, index=INSTRUMENTS.index(s.instrument))
	volume = st.sidebar.slider("Volume", min_value=0.0, max_value=1.0, value=s.volume, step=0.05)

	constraints = Constraints(
		card=(card_min, max(card_min, card_max)),
		span=(span_min, max(span_min, span_max)),
		midi_low=midi_low,
		midi_high=max(midi_low, midi_high),
		tonality=tonality_from_key_name(key_str),
		scale=Scale(scale_str),
	)
	return Settings(constraints=constraints, focus_ratio=focus, instrument=instrument, volume=volume)  # type: ignore[arg-type]


def user_controls(state: Any) -> None:
	users = [GUEST] + list_users()
	new_name = st.sidebar.text_input("New learner")
	if new_name and new_name not in users:
		users.append(new_name)
	user = st.sidebar.selectbox("Learner", users, index=users.index(state.user) if state.user in users else 0)
	if user != state.user:
		save_user(state.user, state.trainer.snapshot())
		data = load_user(user)
		state.trainer.load_user(data)
		state.trainer.sink = _make_sink(data.settings)
		state.user = user
		state.feedback = None
		state.audio = None


def _render(state: Any) -> None:
	sink = state.trainer.sink
	try:
		x = sink.mixdown()
	except SoundfontUnavailable as e:
		st.warning(str(e))
		state.trainer.sink = SynthSink(volume=state.trainer.settings.volume)
		return
	if x.size:
		state.audio = wav_bytes(x)


def main() -> None:
	state = get_state()
	user_controls(state)
	trainer: Trainer = state.trainer
	s = sidebar_controls(trainer.settings)
	if s != trainer.settings:
		instrument_changed = s.instrument != trainer.settings.instrument or s.volume != trainer.settings.volume
		trainer.change_settings(s)
		if instrument_changed:
			trainer.sink = _make_sink(s)
		save_user(state.user, trainer.snapshot())

	st.title("Pitch-Set Trainer")
	agg = trainer.store.aggregate()
	approx = "~" if agg.is_approximate else ""
	st.caption(f"{len(trainer.universe)} sets, {approx}{agg.mastered_count} at aim")

	cols = st.columns(2)
	if cols[0].button("New set", use_container_width=True):
		if trainer.request_trial() is None:
			st.warning("No set matches these settings.")
		state.feedback = None
		_render(state)
	if cols[1].button("Replay", use_container_width=True, disabled=trainer.current is None):
		trainer.replay()
		_render(state)

	if state.audio is not None:
		st.audio(state.audio, format="audio/wav", autoplay=True)

	cur = trainer.current
	if cur is not None and not cur.answered:
		with st.form("guess", clear_on_submit=True):
			text = st.text_input("Offsets (e.g. 0 4 7, ^ lifts an octave)")
			if st.form_submit_button("Submit"):
				res = trainer.submit(expand_octave_marks(text))
				if res is not None and res.ok is None:
					st.info("Type the offsets as numbers.")
				elif res is not None:
					fb = trainer.feedback(res)
					if fb is not None:
						head = "Correct!" if fb.ok else f"Incorrect: {format_shape(fb.truth)}, you said {format_shape(fb.guess)}"
						text = (
							f"{head} Set: {fb.shape_correct}/{fb.window}. Weakest: {round(fb.min_accuracy * 100)}%. "
							f"Overall: {fb.overall_accuracy}%. At aim: {approx}{fb.mastered.mastered_count}/{fb.mastered.universe_size}"
						)
						state.feedback = {"correct": bool(fb.ok), "text": text}
					save_user(state.user, trainer.snapshot())
					st.rerun()
	elif cur is not None and trainer.history:
		if st.button("Play my guess"):
			trainer.play_guess(trainer.history[-1].guess)
			_render(state)
			st.rerun()

	if state.feedback is not None:
		if state.feedback.get("correct"):
			st.success(state.feedback.get("text", "Correct!"))
		else:
			st.error(state.feedback.get("text", "Incorrect"))

	rows = []
	for shape, st_i in trainer.store.items():
		if len(st_i):
			rows.append({"set": format_shape(shape), "answered": len(st_i), "correct": st_i.correct_count, "accuracy": round(st_i.accuracy, 3)})
	if rows:
		st.markdown("---")
		st.subheader("Results by set")
		df = pd.DataFrame(rows).sort_values("accuracy")
		st.dataframe(df, hide_index=True)
		chart = alt.Chart(df).mark_bar().encode(
			x=alt.X("accuracy:Q", scale=alt.Scale(domain=[0, 1])),
			y=alt.Y("set:N", sort="x"),
			color=alt.Color("accuracy:Q", scale=alt.Scale(scheme="redyellowgreen", domain=[0, 1])),
			tooltip=["set", "answered", "correct", "accuracy"],
		).properties(width=400)
		st.altair_chart(chart, use_container_width=True)


if __name__ == "__main__":
	main()
