from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path
from typing import Any

from frame_tester.domain.models import ConnectionConfig, ConnectionRole

from .storage_paths import get_app_data_dir


def config_to_payload(config: ConnectionConfig) -> dict[str, Any]:
    payload = asdict(config)
    payload["role"] = config.role.value
    return payload


def payload_to_config(payload: dict[str, Any]) -> ConnectionConfig:
    defaults = ConnectionConfig()
    timeout = payload.get("connect_timeout_sec")
    return ConnectionConfig(
        role=ConnectionRole(payload.get("role", defaults.role.value)),
        local_address=str(payload.get("local_address", defaults.local_address)),
        local_port=int(payload.get("local_port", defaults.local_port)),
        remote_address=str(payload.get("remote_address", defaults.remote_address)),
        remote_port=int(payload.get("remote_port", defaults.remote_port)),
        connect_timeout_sec=float(timeout) if timeout is not None else None,
    )


class ProfileStore:
    """Named connection settings, one JSON object per profile."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (get_app_data_dir() / "profiles.json")

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def list_names(self) -> list[str]:
        return sorted(self._load().keys())

    def load_profile(self, name: str) -> ConnectionConfig | None:
        payload = self._load().get(name)
        if not isinstance(payload, dict):
            return None
        try:
            return payload_to_config(payload)
        except (TypeError, ValueError):
            return None

    def save_profile(self, name: str, config: ConnectionConfig) -> None:
        data = self._load()
        data[name] = config_to_payload(config)
        self._save(data)

    def delete_profile(self, name: str) -> None:
        data = self._load()
        if name in data:
            del data[name]
            self._save(data)
