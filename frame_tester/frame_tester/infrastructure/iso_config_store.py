from __future__ import annotations

from dataclasses import asdict
import json
import logging
from pathlib import Path
from typing import Any

from frame_tester.domain.models import FieldDescriptor

from .storage_paths import get_app_data_dir


logger = logging.getLogger(__name__)

DEFAULT_ISO_CONFIGS: dict[str, tuple[FieldDescriptor, ...]] = {
    "HPDH": (
        FieldDescriptor(
            bmp_position=1,
            length_type="Fixed",
            data_type="Numeric",
            justification="Right",
            filler="0",
            field_name="Transaction Code",
            default_value="000000",
        ),
        FieldDescriptor(
            bmp_position=2,
            length_type="Variable",
            data_type="Alphanumeric",
            justification="Left",
            filler=" ",
            field_name="Primary Account Number",
            default_value="",
        ),
    ),
}


def _field_from_payload(payload: dict[str, Any]) -> FieldDescriptor:
    return FieldDescriptor(
        bmp_position=int(payload["bmp_position"]),
        length_type=payload.get("length_type", "Fixed"),
        data_type=payload.get("data_type", "Numeric"),
        justification=payload.get("justification", "Right"),
        filler=str(payload.get("filler", "0")),
        field_name=str(payload.get("field_name", "")),
        default_value=str(payload.get("default_value", "")),
    )


class IsoConfigStore:
    """Field layouts keyed by layout name, seeded with HPDH on first use."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (get_app_data_dir() / "iso_configs.json")

    def _seed(self) -> dict[str, list[FieldDescriptor]]:
        data = {name: list(fields) for name, fields in DEFAULT_ISO_CONFIGS.items()}
        self._save(data)
        return data

    def _load(self) -> dict[str, list[FieldDescriptor]]:
        if not self.path.exists():
            logger.info("Initializing ISO config store at %s", self.path)
            return self._seed()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return {
                str(name): [_field_from_payload(item) for item in fields]
                for name, fields in raw.items()
            }
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("ISO config store is corrupt (%s); reinitializing.", exc)
            return self._seed()

    def _save(self, data: dict[str, list[FieldDescriptor]]) -> None:
        payload = {name: [asdict(field) for field in fields] for name, fields in data.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def list_names(self) -> list[str]:
        return sorted(self._load().keys())

    def load(self, name: str) -> list[FieldDescriptor] | None:
        return self._load().get(name)

    def save(self, name: str, fields: list[FieldDescriptor]) -> None:
        data = self._load()
        data[name] = list(fields)
        self._save(data)

    def delete(self, name: str) -> None:
        data = self._load()
        if name in data:
            del data[name]
            self._save(data)
