from __future__ import annotations

from datetime import datetime
import json
import logging
from pathlib import Path
import threading

from frame_tester.domain.models import Direction, DisplayRecord

from .storage_paths import get_app_data_dir


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)[:-3]


class DisplayLogWriter:
    """Append-only JSON-lines copy of the sent/received display."""

    def __init__(self, path: Path | None = None) -> None:
        self._lock = threading.Lock()
        self.path = path or (get_app_data_dir() / "display_log.jsonl")

    def append(self, record: DisplayRecord) -> bool:
        payload = {
            "timestamp": format_timestamp(record.timestamp),
            "direction": record.direction.value,
            "peer": record.peer,
            "text": record.text,
            "hex": record.hex,
        }
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8", newline="") as handle:
                    handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
                return True
            except OSError as exc:
                logger.error("Display log write failed: %s", exc)
                return False

    def load(self) -> list[DisplayRecord]:
        with self._lock:
            if not self.path.exists():
                return []
            try:
                lines = self.path.read_text(encoding="utf-8").splitlines()
            except OSError as exc:
                logger.error("Display log read failed: %s", exc)
                return []

        records: list[DisplayRecord] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
                records.append(
                    DisplayRecord(
                        direction=Direction(payload["direction"]),
                        text=str(payload.get("text", "")),
                        hex=str(payload.get("hex", "")),
                        timestamp=datetime.strptime(payload["timestamp"], TIMESTAMP_FORMAT),
                        peer=str(payload.get("peer", "")),
                    )
                )
            except (json.JSONDecodeError, KeyError, ValueError):
                logger.warning("Skipping unreadable display log line.")
        return records

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.write_text("", encoding="utf-8")
