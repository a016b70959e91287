from pitchtrainer.config import EngineConfig
from pitchtrainer.logging_utils import log_path, setup_logging


def test_defaults():
	cfg = EngineConfig()
	assert cfg.window == 10
	assert cfg.aim == 0.8
	assert cfg.sample_limit == 150_000
	assert cfg.sample_size == 2_000
	assert cfg.refresh_every == 500


def test_env_override(monkeypatch):
	monkeypatch.setenv("PITCHTRAINER_WINDOW", "5")
	monkeypatch.setenv("PITCHTRAINER_AIM", "0.9")
	cfg = EngineConfig()
	assert cfg.window == 5
	assert cfg.aim == 0.9


def test_setup_logging_creates_log_dir(tmp_path):
	cfg = EngineConfig(data_dir=tmp_path, log_level="DEBUG")
	path = setup_logging(cfg)
	assert path == log_path(cfg)
	assert path.parent.is_dir()
