import json

from pitchtrainer.config import EngineConfig
from pitchtrainer.models import Constraints, OutcomeRecord, RandomKey, Settings, UserData
from pitchtrainer.storage import GUEST, last_user, list_users, load_user, remove_user, save_user


def _data(focus=0.5):
	settings = Settings(constraints=Constraints(card=(2, 4), tonality=RandomKey()), focus_ratio=focus)
	logs = {"root": [OutcomeRecord(shape=(2, 9), guess=(2, 9), correct=True)]}
	return UserData(settings=settings, logs=logs)


def test_save_and_load_user(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	save_user("ana", _data(), cfg)
	loaded = load_user("ana", cfg)
	assert loaded == _data()
	assert isinstance(loaded.settings.constraints.tonality, RandomKey)
	assert list_users(cfg) == ["ana"]
	assert last_user(cfg) == "ana"


def test_guest_is_not_saved_but_inherits_last_settings(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	assert load_user(GUEST, cfg) == UserData()
	save_user(GUEST, _data(), cfg)
	assert list_users(cfg) == []
	save_user("bo", _data(focus=0.25), cfg)
	guest = load_user(GUEST, cfg)
	assert guest.settings.focus_ratio == 0.25
	assert guest.logs == {}


def test_remove_user(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	save_user("ana", _data(), cfg)
	remove_user("ana", cfg)
	assert list_users(cfg) == []
	assert last_user(cfg) == GUEST


def test_corrupt_file_gives_defaults(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	(tmp_path / "user_ana.json").write_text("{not json")
	assert load_user("ana", cfg).settings == Settings()


def test_legacy_flat_log_moves_to_atonal_bucket(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	raw = {"settings": {}, "log": [{"rel": [0, 4, 7], "guess": [0, 4, 7], "ok": True}]}
	(tmp_path / "user_old.json").write_text(json.dumps(raw))
	data = load_user("old", cfg)
	assert data.logs == {"ATONAL": [OutcomeRecord(shape=(0, 4, 7), guess=(0, 4, 7), correct=True)]}


def test_invalid_settings_fall_back(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path)
	raw = {"settings": {"focus_ratio": 7}, "logs": {}}
	(tmp_path / "user_x.json").write_text(json.dumps(raw))
	assert load_user("x", cfg).settings == Settings()
