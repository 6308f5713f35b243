import json
import os
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Optional

CONFIG_ROOT_DIR = Path.home() / ".caption-tuner"
CONFIG_DIR_ENV = "CAPTION_TUNER_CONFIG_DIR"
API_KEY_ENV = "OPENAI_API_KEY"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "llm_base_url": "https://api.openai.com/v1",
    "llm_model": "gpt-4o",
    "llm_api_key": "",
    "llm_timeout": 120.0,
    "llm_temperature": 0.3,
    "llm_max_completion_tokens": 4096,
    # Empty means "use llm_model".
    "calibrate_model": "",
    "transform_model": "",
    "categorize_model": "",
    "preview_count": 5,
    "window_size_ms": 60000,
    "upcoming_chunk_size": 20,
    "log_level": "INFO",
}

_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "preview_count": int,
    "window_size_ms": int,
    "upcoming_chunk_size": int,
    "llm_max_completion_tokens": int,
    "llm_timeout": float,
    "llm_temperature": float,
}
_MODEL_KEYS = ("calibrate_model", "transform_model", "categorize_model")


def get_default_config_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV)
    return Path(override).expanduser() if override else CONFIG_ROOT_DIR


def get_default_config_path() -> Path:
    return get_default_config_dir() / "config.json"


class AppConfig:
    """Settings store: JSON on disk merged over defaults, with typed accessors."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.defaults: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self.load_warning: Optional[str] = None
        self.settings = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        self.load_warning = None
        if not self.config_path.exists():
            return dict(self.defaults)
        try:
            stored = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            message = f"Failed to parse config at {self.config_path}: {exc}. Using defaults."
            copy = self._keep_unreadable_copy()
            if copy is not None:
                message += f" Saved unreadable copy as {copy.name}."
            self.load_warning = message
            return dict(self.defaults)
        if not isinstance(stored, dict):
            self.load_warning = f"Config at {self.config_path} is not a JSON object. Using defaults."
            return dict(self.defaults)
        return {**self.defaults, **stored}

    def save_config(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(json.dumps(self.settings, indent=4, ensure_ascii=False), encoding="utf-8")

    def get(self, key: str) -> Any:
        value = self.settings.get(key, self.defaults.get(key))
        if key == "llm_api_key":
            return value or os.getenv(API_KEY_ENV, "")
        if key in _MODEL_KEYS:
            return value or self.get("llm_model")
        coerce = _COERCERS.get(key)
        if coerce is None:
            return value
        try:
            return coerce(value)
        except (TypeError, ValueError):
            return coerce(self.defaults[key])

    def set(self, key: str, value: Any) -> None:
        """Update a setting and persist immediately."""
        self.settings[key] = value
        self.save_config()

    def _keep_unreadable_copy(self) -> Optional[Path]:
        base = self.config_path.name + ".corrupt"
        target = self.config_path.with_name(base)
        attempt = 1
        while target.exists():
            target = self.config_path.with_name(f"{base}{attempt}")
            attempt += 1
        try:
            shutil.copy2(self.config_path, target)
        except OSError:
            return None
        return target
