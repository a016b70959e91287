from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from .config import EngineConfig

LOG_FILENAME = "pitchtrainer.log"


def log_path(config: EngineConfig) -> Path:
	return config.data_dir / "logs" / LOG_FILENAME


def setup_logging(config: EngineConfig, to_file: bool = True) -> Path:
	"""Replace loguru's default handler with stderr (and file) sinks at the configured level."""
	logger.remove()
	logger.add(
		sys.stderr,
		level=config.log_level,
		format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
	)
	path = log_path(config)
	if to_file:
		path.parent.mkdir(parents=True, exist_ok=True)
		logger.add(path, level="DEBUG", rotation="1 MB", retention=3)
	return path
