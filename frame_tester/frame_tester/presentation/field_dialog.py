from __future__ import annotations

from PySide6.QtWidgets import (
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QLabel,
    QLineEdit,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from frame_tester.application.iso_configs import (
    DATA_TYPES,
    JUSTIFICATIONS,
    LENGTH_TYPES,
    MAX_BMP_POSITION,
    MIN_BMP_POSITION,
)
from frame_tester.domain import FieldDescriptor


class FieldDescriptorDialog(QDialog):
    def __init__(
        self,
        config_name: str,
        initial: FieldDescriptor | None = None,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("フィールド編集" if initial is not None else "フィールド追加")
        self.resize(420, 300)

        root = QVBoxLayout(self)
        root.addWidget(QLabel(f"設定: {config_name}"))

        form = QFormLayout()

        self.bmp_position_spin = QSpinBox()
        self.bmp_position_spin.setRange(MIN_BMP_POSITION, MAX_BMP_POSITION)
        self.length_type_combo = QComboBox()
        self.length_type_combo.addItems(LENGTH_TYPES)
        self.data_type_combo = QComboBox()
        self.data_type_combo.addItems(DATA_TYPES)
        self.justification_combo = QComboBox()
        self.justification_combo.addItems(JUSTIFICATIONS)
        self.filler_edit = QLineEdit("0")
        self.filler_edit.setMaxLength(1)
        self.field_name_edit = QLineEdit()
        self.default_value_edit = QLineEdit()

        form.addRow("BMP位置", self.bmp_position_spin)
        form.addRow("長さ種別", self.length_type_combo)
        form.addRow("データ種別", self.data_type_combo)
        form.addRow("寄せ", self.justification_combo)
        form.addRow("埋め文字", self.filler_edit)
        form.addRow("項目名", self.field_name_edit)
        form.addRow("初期値", self.default_value_edit)
        root.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        root.addWidget(buttons)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)

        if initial is not None:
            self._apply(initial)

    def _apply(self, field: FieldDescriptor) -> None:
        self.bmp_position_spin.setValue(field.bmp_position)
        self.length_type_combo.setCurrentText(field.length_type)
        self.data_type_combo.setCurrentText(field.data_type)
        self.justification_combo.setCurrentText(field.justification)
        self.filler_edit.setText(field.filler)
        self.field_name_edit.setText(field.field_name)
        self.default_value_edit.setText(field.default_value)

    def result_field(self) -> FieldDescriptor:
        # filler may legitimately be a single space, so it is not stripped
        return FieldDescriptor(
            bmp_position=self.bmp_position_spin.value(),
            length_type=self.length_type_combo.currentText(),
            data_type=self.data_type_combo.currentText(),
            justification=self.justification_combo.currentText(),
            filler=self.filler_edit.text(),
            field_name=self.field_name_edit.text().strip(),
            default_value=self.default_value_edit.text(),
        )
