import io

import numpy as np
import soundfile as sf

from pitchtrainer.audio import SR, SynthSink, arpeggio, chord, partials, wav_bytes


def test_partials_length_and_dtype():
	dur = 0.5
	x = partials(440.0, dur)
	assert isinstance(x, np.ndarray)
	assert x.dtype == np.float32
	assert len(x) == int(SR * dur)


def test_chord_envelope_starts_and_ends_silent():
	x = chord([60, 64, 67], 1.0)
	assert len(x) == SR
	assert abs(float(x[0])) < 1e-6
	assert abs(float(x[-1])) < 1e-3
	assert np.max(np.abs(x)) <= 1.0


def test_arpeggio_concatenates_notes():
	note_dur = 0.3
	x = arpeggio([60, 64, 67], note_dur)
	assert len(x) == 3 * int(SR * note_dur)


def test_sink_mixdown_places_delayed_clip():
	sink = SynthSink()
	sink.play_chord([60], 0.5)
	sink.play_chord([67], 0.5, delay=1.0)
	x = sink.mixdown()
	assert len(x) == int(SR * 1.0) + int(SR * 0.5)
	assert np.max(np.abs(x)) <= 1.0 + 1e-6
	# gap between the two clips is silent
	assert np.all(x[int(SR * 0.6):int(SR * 0.9)] == 0.0)
	assert sink.clips == []


def test_wav_bytes_round_trip_length():
	x = chord([60, 64], 0.25)
	data, sr = sf.read(io.BytesIO(wav_bytes(x)), dtype="float32")
	assert sr == SR
	assert len(data) == len(x)
