from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
import logging

from frame_tester.domain.models import FieldDescriptor
from frame_tester.infrastructure import IsoConfigStore


logger = logging.getLogger(__name__)

LENGTH_TYPES = ("Fixed", "Variable")
DATA_TYPES = ("Numeric", "Alphanumeric")
JUSTIFICATIONS = ("Left", "Right")
MIN_BMP_POSITION = 1
MAX_BMP_POSITION = 128


def validate_field(
    field: FieldDescriptor,
    existing: Sequence[FieldDescriptor] = (),
    replacing_index: int | None = None,
) -> tuple[str, ...]:
    errors: list[str] = []

    if not MIN_BMP_POSITION <= field.bmp_position <= MAX_BMP_POSITION:
        errors.append(f"BMP位置は{MIN_BMP_POSITION}〜{MAX_BMP_POSITION}で指定してください。")
    else:
        for index, other in enumerate(existing):
            if index != replacing_index and other.bmp_position == field.bmp_position:
                errors.append(f"BMP位置 {field.bmp_position} は既に定義されています。")
                break

    if field.length_type not in LENGTH_TYPES:
        errors.append("長さ種別は Fixed / Variable のいずれかを選択してください。")
    if field.data_type not in DATA_TYPES:
        errors.append("データ種別は Numeric / Alphanumeric のいずれかを選択してください。")
    if field.justification not in JUSTIFICATIONS:
        errors.append("寄せは Left / Right のいずれかを選択してください。")
    if len(field.filler) != 1:
        errors.append("埋め文字は1文字で指定してください。")
    if not field.field_name.strip():
        errors.append("項目名を入力してください。")

    return tuple(errors)


def _ordered(fields: Sequence[FieldDescriptor]) -> list[FieldDescriptor]:
    return sorted(fields, key=lambda item: item.bmp_position)


class IsoConfigService:
    """CRUD over named field layouts; fields are kept in BMP order."""

    def __init__(self, store: IsoConfigStore | None = None) -> None:
        self._store = store or IsoConfigStore()

    def list_names(self) -> list[str]:
        return self._store.list_names()

    def get_fields(self, name: str) -> list[FieldDescriptor]:
        return list(self._store.load(name) or [])

    def create_config(self, name: str) -> tuple[str, ...]:
        name = name.strip()
        if not name:
            return ("設定名を入力してください。",)
        if name in self._store.list_names():
            return (f"設定 '{name}' は既に存在します。",)
        self._store.save(name, [])
        logger.info("Created ISO config %s", name)
        return ()

    def delete_config(self, name: str) -> None:
        self._store.delete(name)
        logger.info("Deleted ISO config %s", name)

    def add_field(self, name: str, field: FieldDescriptor) -> tuple[str, ...]:
        fields = self.get_fields(name)
        normalized = replace(field, field_name=field.field_name.strip())
        errors = validate_field(normalized, fields)
        if errors:
            return errors
        self._store.save(name, _ordered([*fields, normalized]))
        return ()

    def update_field(self, name: str, index: int, field: FieldDescriptor) -> tuple[str, ...]:
        fields = self.get_fields(name)
        if not 0 <= index < len(fields):
            raise IndexError(f"field index {index} out of range for {name!r}")
        normalized = replace(field, field_name=field.field_name.strip())
        errors = validate_field(normalized, fields, replacing_index=index)
        if errors:
            return errors
        fields[index] = normalized
        self._store.save(name, _ordered(fields))
        return ()

    def delete_field(self, name: str, index: int) -> None:
        fields = self.get_fields(name)
        if not 0 <= index < len(fields):
            raise IndexError(f"field index {index} out of range for {name!r}")
        del fields[index]
        self._store.save(name, fields)
