from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from .config import EngineConfig, get_config
from .models import Settings, UserData

GUEST = "Guest"
USER_PREFIX = "user_"
CURRENT_USER_FILE = "current_user.txt"
LAST_SETTINGS_FILE = "last_settings.json"


def _data_dir(config: Optional[EngineConfig] = None) -> Path:
	dir_ = (config or get_config()).data_dir
	dir_.mkdir(parents=True, exist_ok=True)
	return dir_


def _user_path(user: str, config: Optional[EngineConfig] = None) -> Path:
	return _data_dir(config) / f"{USER_PREFIX}{user}.json"


def _load_raw(p: Path) -> Dict[str, Any]:
	if not p.exists():
		return {}
	try:
		data = json.loads(p.read_text())
		return data if isinstance(data, dict) else {}
	except (OSError, ValueError) as e:
		logger.warning(f"Ignoring unreadable {p}: {e}")
		return {}


def _save_raw(p: Path, data: Dict[str, Any]) -> None:
	p.write_text(json.dumps(data, indent=2))


def _settings_from(obj: Any) -> Settings:
	if isinstance(obj, dict):
		try:
			return Settings.model_validate(obj)
		except ValidationError as e:
			logger.warning(f"Stored settings invalid, using defaults: {e.error_count()} errors")
	return Settings()


def list_users(config: Optional[EngineConfig] = None) -> List[str]:
	names = [p.stem[len(USER_PREFIX):] for p in _data_dir(config).glob(f"{USER_PREFIX}*.json")]
	return sorted(names)


def last_user(config: Optional[EngineConfig] = None) -> str:
	p = _data_dir(config) / CURRENT_USER_FILE
	if p.exists():
		name = p.read_text().strip()
		if name:
			return name
	return GUEST


def load_user(user: str, config: Optional[EngineConfig] = None) -> UserData:
	"""Load a learner's settings and outcome logs.

	The guest starts from the last settings any named learner saved, with no history.
	"""
	if user == GUEST:
		raw = _load_raw(_data_dir(config) / LAST_SETTINGS_FILE)
		return UserData(settings=_settings_from(raw))
	raw = _load_raw(_user_path(user, config))
	settings = _settings_from(raw.get("settings"))
	logs = raw.get("logs")
	if not isinstance(logs, dict):
		# files from before logs were split by tonality kept one flat list
		legacy = raw.get("log")
		logs = {"ATONAL": legacy if isinstance(legacy, list) else []}
	try:
		return UserData.model_validate({"settings": settings.model_dump(), "logs": logs})
	except ValidationError as e:
		logger.warning(f"Stored logs for {user} invalid, starting fresh: {e.error_count()} errors")
		return UserData(settings=settings)


def save_user(user: str, data: UserData, config: Optional[EngineConfig] = None) -> None:
	if user == GUEST:
		return
	dir_ = _data_dir(config)
	_save_raw(_user_path(user, config), data.model_dump(mode="json"))
	(dir_ / CURRENT_USER_FILE).write_text(user)
	_save_raw(dir_ / LAST_SETTINGS_FILE, data.settings.model_dump(mode="json"))


def remove_user(user: str, config: Optional[EngineConfig] = None) -> None:
	if user == GUEST:
		return
	p = _user_path(user, config)
	if p.exists():
		p.unlink()
	cur = _data_dir(config) / CURRENT_USER_FILE
	if cur.exists() and cur.read_text().strip() == user:
		cur.unlink()
