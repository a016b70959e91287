"""
Engine configuration.

Fixed engine constants (window size, aim threshold, sampling parameters,
playback timing) loaded from environment variables prefixed with
``PITCHTRAINER_`` or from a ``.env`` file.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
	model_config = SettingsConfigDict(
		env_prefix="PITCHTRAINER_",
		env_file=".env",
		env_file_encoding="utf-8",
		case_sensitive=False,
		extra="ignore",
	)

	# Statistics
	window: int = Field(default=10, ge=1, description="Outcomes kept per shape")
	aim: float = Field(default=0.8, ge=0.0, le=1.0, description="Accuracy counted as mastered")
	sample_limit: int = Field(default=150_000, ge=1, description="Largest universe counted exactly")
	sample_size: int = Field(default=2_000, ge=1)
	refresh_every: int = Field(default=500, ge=1, description="Answers between estimate resamples")

	# Playback
	duration: float = Field(default=2.5, gt=0.0)
	key_duration: float = Field(default=1.5, gt=0.0)
	tonic_lead_time: float = Field(default=0.45, ge=0.0)
	arp_every: int = Field(default=3, ge=1)
	arp_note_duration: float = Field(default=0.6, gt=0.0)
	amp_noise: float = Field(default=0.3, ge=0.0, le=0.9)

	# Storage
	data_dir: Path = Field(default_factory=lambda: Path.home() / ".pitchtrainer")
	sf2_path: Optional[Path] = Field(default=None, description="Local .sf2/.sf3 overriding the download")

	log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
	"""Get cached config instance."""
	return EngineConfig()
