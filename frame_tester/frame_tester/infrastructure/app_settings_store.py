from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .storage_paths import get_app_data_dir


class AppSettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (get_app_data_dir() / "app_settings.json")

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def get_bool(self, key: str, default: bool = False) -> bool:
        return bool(self._load().get(key, default))

    def set_bool(self, key: str, value: bool) -> None:
        self._set(key, bool(value))

    def get_str(self, key: str, default: str = "") -> str:
        value = self._load().get(key, default)
        return value if isinstance(value, str) else default

    def set_str(self, key: str, value: str) -> None:
        self._set(key, str(value))
