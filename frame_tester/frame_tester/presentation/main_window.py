from __future__ import annotations

from html import escape

from PySide6.QtCore import QTimer
from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (
    QAbstractItemView,
    QCheckBox,
    QComboBox,
    QDoubleSpinBox,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QHeaderView,
    QInputDialog,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QPushButton,
    QSpinBox,
    QStatusBar,
    QTableWidget,
    QTableWidgetItem,
    QTabWidget,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from frame_tester.application import IsoConfigService, SessionManager, text_to_hex
from frame_tester.domain import (
    BindFailureError,
    ConnectionConfig,
    ConnectionRole,
    Direction,
    DisplayRecord,
    FrameTesterError,
    SessionStatus,
)
from frame_tester.infrastructure import AppSettingsStore, DisplayLogWriter
from .field_dialog import FieldDescriptorDialog

RECORD_COLORS = {
    Direction.SENT: "#f08080",
    Direction.RECEIVED: "green",
}

ROLE_CHOICES = [
    (ConnectionRole.LISTENER, "サーバー（待受）"),
    (ConnectionRole.CONNECTOR, "クライアント（接続）"),
]

FIELD_COLUMNS = ["BMP位置", "長さ種別", "データ種別", "寄せ", "埋め文字", "項目名", "初期値"]

ACTIVE_STATES = {
    SessionStatus.STARTING,
    SessionStatus.LISTENING,
    SessionStatus.CONNECTING,
    SessionStatus.CONNECTED,
}


def format_record_html(record: DisplayRecord) -> str:
    label = "Sent" if record.direction == Direction.SENT else "Received"
    color = RECORD_COLORS[record.direction]
    peer = f" <span style='color:#6B7280;'>[{escape(record.peer)}]</span>" if record.peer else ""
    return (
        f"{record.timestamp.strftime('%H:%M:%S')} <strong>{label}:</strong>{peer} "
        f"<span style='color:{color};'>{escape(record.text)}</span>"
        f"<span style='color:lightblue; font-style:italic;'> (HEX: {record.hex})</span>"
    )


class MainWindow(QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Frame Tester")
        self.resize(900, 700)

        self.manager = SessionManager(display_log=DisplayLogWriter())
        self.settings_store = AppSettingsStore()
        self.iso_service = IsoConfigService()

        self._build_ui()
        self._connect_signals()
        self._restore_settings()
        self._refresh_profiles()
        self._reload_display()
        self._refresh_iso_configs()
        self._update_button_states()

        self.timer = QTimer(self)
        self.timer.setInterval(100)
        self.timer.timeout.connect(self._on_tick)
        self.timer.start()

    def _build_ui(self) -> None:
        root = QWidget(self)
        self.setCentralWidget(root)
        outer_layout = QVBoxLayout(root)

        self.tcp_status_label = QLabel("TCP Status: DOWN")
        outer_layout.addWidget(self.tcp_status_label)

        self.tabs = QTabWidget()
        self.tabs.addTab(self._build_connection_tab(), "接続設定")
        self.tabs.addTab(self._build_run_tab(), "送受信")
        self.tabs.addTab(self._build_iso_tab(), "ISO設定")
        outer_layout.addWidget(self.tabs)

        status = QStatusBar(self)
        self.setStatusBar(status)
        self.peer_label = QLabel("接続数: 0")
        self.sent_label = QLabel("送信: 0")
        self.recv_label = QLabel("受信: 0")
        self.fail_label = QLabel("送信失敗: 0")
        status.addPermanentWidget(self.peer_label)
        status.addPermanentWidget(self.sent_label)
        status.addPermanentWidget(self.recv_label)
        status.addPermanentWidget(self.fail_label)

    def _build_connection_tab(self) -> QWidget:
        box = QGroupBox("TCP接続")
        layout = QFormLayout(box)

        self.role_combo = QComboBox()
        for role, label in ROLE_CHOICES:
            self.role_combo.addItem(label, userData=role.value)
        defaults = ConnectionConfig()
        self.local_address_edit = QLineEdit(defaults.local_address)
        self.local_port_spin = QSpinBox()
        self.local_port_spin.setRange(0, 65535)
        self.local_port_spin.setValue(defaults.local_port)
        self.remote_address_edit = QLineEdit(defaults.remote_address)
        self.remote_port_spin = QSpinBox()
        self.remote_port_spin.setRange(1, 65535)
        self.remote_port_spin.setValue(defaults.remote_port)
        self.connect_timeout_spin = QDoubleSpinBox()
        self.connect_timeout_spin.setRange(0.0, 600.0)
        self.connect_timeout_spin.setSingleStep(1.0)
        self.connect_timeout_spin.setSpecialValueText("なし")

        layout.addRow("動作モード", self.role_combo)
        layout.addRow("待受アドレス", self.local_address_edit)
        layout.addRow("待受ポート", self.local_port_spin)
        layout.addRow("接続先アドレス", self.remote_address_edit)
        layout.addRow("接続先ポート", self.remote_port_spin)
        layout.addRow("接続タイムアウト(sec)", self.connect_timeout_spin)

        button_row = QHBoxLayout()
        self.connect_btn = QPushButton("接続")
        self.disconnect_btn = QPushButton("切断")
        button_row.addWidget(self.connect_btn)
        button_row.addWidget(self.disconnect_btn)
        button_row.addStretch(1)

        profile_box = QGroupBox("プロファイル")
        profile_layout = QFormLayout(profile_box)
        self.profile_name_edit = QLineEdit()
        self.profile_combo = QComboBox()
        self.profile_load_btn = QPushButton("読込")
        self.profile_save_btn = QPushButton("保存")
        self.profile_delete_btn = QPushButton("削除")
        profile_btn_row = QWidget()
        profile_btn_layout = QHBoxLayout(profile_btn_row)
        profile_btn_layout.setContentsMargins(0, 0, 0, 0)
        profile_btn_layout.addWidget(self.profile_load_btn)
        profile_btn_layout.addWidget(self.profile_save_btn)
        profile_btn_layout.addWidget(self.profile_delete_btn)
        profile_layout.addRow("保存名", self.profile_name_edit)
        profile_layout.addRow("一覧", self.profile_combo)
        profile_layout.addRow(profile_btn_row)

        self._config_widgets = [
            self.role_combo,
            self.local_address_edit,
            self.local_port_spin,
            self.remote_address_edit,
            self.remote_port_spin,
            self.connect_timeout_spin,
            self.profile_load_btn,
        ]

        wrapper = QWidget()
        wrapper_layout = QVBoxLayout(wrapper)
        wrapper_layout.addWidget(box)
        wrapper_layout.addLayout(button_row)
        wrapper_layout.addWidget(profile_box)
        wrapper_layout.addStretch(1)
        return wrapper

    def _build_run_tab(self) -> QWidget:
        input_box = QGroupBox("送信データ")
        input_layout = QVBoxLayout(input_box)

        self.ascii_input = QPlainTextEdit()
        self.ascii_input.setPlaceholderText("ASCII入力（\\XX で任意のバイトを指定。例: ABC\\0d\\0a）")
        self.ascii_input.setMaximumHeight(90)
        self.hex_output = QLineEdit()
        self.hex_output.setPlaceholderText("HEX")

        send_row = QHBoxLayout()
        self.send_btn = QPushButton("HEX送信")
        self.clear_log_btn = QPushButton("ログクリア")
        self.auto_respond_check = QCheckBox("自動応答（28文字目を'2'に置換して返信）")
        send_row.addWidget(self.send_btn)
        send_row.addWidget(self.clear_log_btn)
        send_row.addWidget(self.auto_respond_check)
        send_row.addStretch(1)

        input_layout.addWidget(QLabel("ASCII"))
        input_layout.addWidget(self.ascii_input)
        input_layout.addWidget(QLabel("HEX"))
        input_layout.addWidget(self.hex_output)
        input_layout.addLayout(send_row)

        log_box = QGroupBox("送受信ログ")
        log_layout = QVBoxLayout(log_box)
        self.display_view = QTextEdit()
        self.display_view.setReadOnly(True)
        log_layout.addWidget(self.display_view)

        wrapper = QWidget()
        wrapper_layout = QVBoxLayout(wrapper)
        wrapper_layout.addWidget(input_box)
        wrapper_layout.addWidget(log_box)
        return wrapper

    def _build_iso_tab(self) -> QWidget:
        selector_row = QHBoxLayout()
        self.iso_combo = QComboBox()
        self.iso_new_btn = QPushButton("新規")
        self.iso_delete_btn = QPushButton("設定削除")
        selector_row.addWidget(QLabel("設定"))
        selector_row.addWidget(self.iso_combo, 1)
        selector_row.addWidget(self.iso_new_btn)
        selector_row.addWidget(self.iso_delete_btn)

        self.field_table = QTableWidget(0, len(FIELD_COLUMNS))
        self.field_table.setHorizontalHeaderLabels(FIELD_COLUMNS)
        self.field_table.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.field_table.setSelectionMode(QAbstractItemView.SelectionMode.SingleSelection)
        self.field_table.setEditTriggers(QAbstractItemView.EditTrigger.NoEditTriggers)
        self.field_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)

        field_btn_row = QHBoxLayout()
        self.field_add_btn = QPushButton("追加")
        self.field_edit_btn = QPushButton("編集")
        self.field_delete_btn = QPushButton("削除")
        field_btn_row.addWidget(self.field_add_btn)
        field_btn_row.addWidget(self.field_edit_btn)
        field_btn_row.addWidget(self.field_delete_btn)
        field_btn_row.addStretch(1)

        wrapper = QWidget()
        wrapper_layout = QVBoxLayout(wrapper)
        wrapper_layout.addLayout(selector_row)
        wrapper_layout.addWidget(self.field_table)
        wrapper_layout.addLayout(field_btn_row)
        return wrapper

    def _connect_signals(self) -> None:
        self.connect_btn.clicked.connect(self._on_connect)
        self.disconnect_btn.clicked.connect(self._on_disconnect)
        self.role_combo.currentIndexChanged.connect(self._sync_role_inputs)

        self.profile_save_btn.clicked.connect(self._save_profile)
        self.profile_load_btn.clicked.connect(self._load_profile)
        self.profile_delete_btn.clicked.connect(self._delete_profile)

        self.ascii_input.textChanged.connect(self._on_ascii_changed)
        self.hex_output.textChanged.connect(self._on_hex_edited)
        self.send_btn.clicked.connect(self._on_send)
        self.clear_log_btn.clicked.connect(self._on_clear_log)
        self.auto_respond_check.toggled.connect(self._on_auto_respond_toggled)

        self.iso_combo.currentIndexChanged.connect(self._populate_field_table)
        self.iso_new_btn.clicked.connect(self._create_iso_config)
        self.iso_delete_btn.clicked.connect(self._delete_iso_config)
        self.field_add_btn.clicked.connect(self._add_field)
        self.field_edit_btn.clicked.connect(self._edit_field)
        self.field_delete_btn.clicked.connect(self._delete_field)
        self.field_table.doubleClicked.connect(lambda _index: self._edit_field())

    def _restore_settings(self) -> None:
        self.ascii_input.blockSignals(True)
        self.ascii_input.setPlainText(self.settings_store.get_str("ascii_input"))
        self.ascii_input.blockSignals(False)
        self.hex_output.blockSignals(True)
        self.hex_output.setText(self.settings_store.get_str("hex_output"))
        self.hex_output.blockSignals(False)

        auto_respond = self.settings_store.get_bool("auto_respond", False)
        self.auto_respond_check.setChecked(auto_respond)
        self.manager.set_auto_respond(auto_respond)

        index = self.role_combo.findData(self.settings_store.get_str("last_role", ConnectionRole.LISTENER.value))
        if index >= 0:
            self.role_combo.setCurrentIndex(index)
        self._sync_role_inputs()

    def _on_tick(self) -> None:
        for event in self.manager.poll_events():
            event_type = event.get("type")
            if event_type == "record":
                record = event.get("record")
                if isinstance(record, DisplayRecord):
                    self.display_view.append(format_record_html(record))
            elif event_type == "state":
                self._update_tcp_status()
            elif event_type == "status":
                self.statusBar().showMessage(str(event.get("message", "")), 5000)
            elif event_type == "error":
                message = str(event.get("message", ""))
                self.statusBar().showMessage(message, 10000)
                if isinstance(event.get("error"), FrameTesterError):
                    QMessageBox.warning(self, "TCPエラー", message)
            elif event_type == "session_started":
                warnings = event.get("warnings", [])
                if warnings:
                    self.statusBar().showMessage(" / ".join(str(w) for w in warnings), 7000)
            elif event_type == "session_stopped":
                self.statusBar().showMessage("切断しました。", 5000)
            elif event_type == "records_cleared":
                self.display_view.clear()
            elif event_type == "preflight_failed":
                self.statusBar().showMessage("入力内容を確認してください。", 5000)

        self._update_tcp_status()
        self._update_stats_view()
        self._update_button_states()

    def _update_tcp_status(self) -> None:
        status = self.manager.status
        text = f"TCP Status: {status.value}"
        if status == SessionStatus.ERROR and self.manager.status_message:
            text += f" ({self.manager.status_message})"
        elif status == SessionStatus.LISTENING and self.manager.listening_address:
            host, port = self.manager.listening_address
            text += f" ({host}:{port})"
        self.tcp_status_label.setText(text)

    def _update_stats_view(self) -> None:
        stats = self.manager.get_stats_snapshot()
        self.peer_label.setText(f"接続数: {stats.peer_count}")
        self.sent_label.setText(f"送信: {stats.sent_frames}")
        self.recv_label.setText(f"受信: {stats.received_frames}")
        self.fail_label.setText(f"送信失敗: {stats.write_failures}")

    def _update_button_states(self) -> None:
        status = self.manager.status
        self.connect_btn.setEnabled(status in {SessionStatus.DOWN, SessionStatus.ERROR})
        self.disconnect_btn.setEnabled(status != SessionStatus.DOWN)
        self.send_btn.setEnabled(status == SessionStatus.CONNECTED)

        editable = status in {SessionStatus.DOWN, SessionStatus.ERROR}
        for widget in self._config_widgets:
            widget.setEnabled(editable)
        if editable:
            self._sync_role_inputs()

    def _sync_role_inputs(self) -> None:
        listener = self.role_combo.currentData() == ConnectionRole.LISTENER.value
        self.local_address_edit.setEnabled(listener)
        self.local_port_spin.setEnabled(listener)
        self.remote_address_edit.setEnabled(not listener)
        self.remote_port_spin.setEnabled(not listener)
        self.connect_timeout_spin.setEnabled(not listener)

    def _collect_connection_config(self) -> ConnectionConfig:
        timeout = float(self.connect_timeout_spin.value())
        return ConnectionConfig(
            role=ConnectionRole(self.role_combo.currentData()),
            local_address=self.local_address_edit.text().strip(),
            local_port=self.local_port_spin.value(),
            remote_address=self.remote_address_edit.text().strip(),
            remote_port=self.remote_port_spin.value(),
            connect_timeout_sec=timeout if timeout > 0 else None,
        )

    def _apply_connection_config(self, config: ConnectionConfig) -> None:
        index = self.role_combo.findData(config.role.value)
        if index >= 0:
            self.role_combo.setCurrentIndex(index)
        self.local_address_edit.setText(config.local_address)
        self.local_port_spin.setValue(config.local_port)
        self.remote_address_edit.setText(config.remote_address)
        self.remote_port_spin.setValue(config.remote_port)
        self.connect_timeout_spin.setValue(config.connect_timeout_sec or 0.0)
        self._sync_role_inputs()

    def _on_connect(self) -> None:
        if self.manager.status == SessionStatus.ERROR:
            self.manager.stop(reason="restart_after_error")
        if self.manager.status != SessionStatus.DOWN:
            QMessageBox.warning(
                self,
                "接続中",
                "TCP接続が有効です。新しく接続する前に現在の接続を切断してください。",
            )
            return

        config = self._collect_connection_config()
        try:
            errors = self.manager.configure(config)
            if errors:
                QMessageBox.warning(self, "接続できません", "\n".join(errors))
                return
            self.settings_store.set_str("last_role", config.role.value)
            self.manager.start()
        except BindFailureError:
            # already reported through the error event
            pass
        except FrameTesterError as exc:
            QMessageBox.warning(self, "接続できません", str(exc))
        self._update_tcp_status()

    def _on_disconnect(self) -> None:
        self.manager.stop()
        self._update_tcp_status()

    def _on_ascii_changed(self) -> None:
        ascii_value = self.ascii_input.toPlainText()
        hex_value = text_to_hex(ascii_value)
        self.hex_output.blockSignals(True)
        self.hex_output.setText(hex_value)
        self.hex_output.blockSignals(False)
        self.settings_store.set_str("ascii_input", ascii_value)
        self.settings_store.set_str("hex_output", hex_value)

    def _on_hex_edited(self, text: str) -> None:
        self.settings_store.set_str("hex_output", text)

    def _on_send(self) -> None:
        try:
            delivered = self.manager.send(self.hex_output.text())
        except FrameTesterError as exc:
            QMessageBox.warning(self, "送信できません", str(exc))
            return
        if delivered == 0:
            self.statusBar().showMessage("送信先がありません。", 5000)

    def _on_clear_log(self) -> None:
        self.manager.clear_records()
        self.display_view.clear()

    def _on_auto_respond_toggled(self, checked: bool) -> None:
        self.manager.set_auto_respond(checked)
        self.settings_store.set_bool("auto_respond", checked)

    def _reload_display(self) -> None:
        self.display_view.clear()
        for record in self.manager.records():
            self.display_view.append(format_record_html(record))

    def _save_profile(self) -> None:
        name = self.profile_name_edit.text().strip()
        if not name:
            QMessageBox.warning(self, "入力エラー", "プロファイル名を入力してください。")
            return
        self.manager.save_profile(name, self._collect_connection_config())
        self._refresh_profiles(selected=name)
        self.statusBar().showMessage(f"プロファイルを保存しました: {name}", 4000)

    def _load_profile(self) -> None:
        name = self.profile_combo.currentText().strip()
        if not name:
            return
        config = self.manager.load_profile(name)
        if config is None:
            QMessageBox.warning(self, "読込エラー", f"プロファイルが見つかりません: {name}")
            return
        self._apply_connection_config(config)
        self.profile_name_edit.setText(name)
        self.statusBar().showMessage(f"プロファイルを読込みました: {name}", 4000)

    def _delete_profile(self) -> None:
        name = self.profile_combo.currentText().strip()
        if not name:
            return
        reply = QMessageBox.question(self, "確認", f"プロファイル '{name}' を削除しますか？")
        if reply == QMessageBox.StandardButton.Yes:
            self.manager.delete_profile(name)
            self._refresh_profiles()

    def _refresh_profiles(self, selected: str = "") -> None:
        names = self.manager.list_profiles()
        self.profile_combo.blockSignals(True)
        self.profile_combo.clear()
        self.profile_combo.addItems(names)
        if selected and selected in names:
            self.profile_combo.setCurrentText(selected)
        self.profile_combo.blockSignals(False)

    def _refresh_iso_configs(self, selected: str = "") -> None:
        names = self.iso_service.list_names()
        current = selected or self.iso_combo.currentText()
        self.iso_combo.blockSignals(True)
        self.iso_combo.clear()
        self.iso_combo.addItems(names)
        if current and current in names:
            self.iso_combo.setCurrentText(current)
        elif names:
            self.iso_combo.setCurrentIndex(0)
        self.iso_combo.blockSignals(False)
        self._populate_field_table()

    def _populate_field_table(self) -> None:
        name = self.iso_combo.currentText()
        fields = self.iso_service.get_fields(name) if name else []
        self.field_table.setRowCount(len(fields))
        for row, field in enumerate(fields):
            values = [
                str(field.bmp_position),
                field.length_type,
                field.data_type,
                field.justification,
                field.filler,
                field.field_name,
                field.default_value,
            ]
            for column, value in enumerate(values):
                self.field_table.setItem(row, column, QTableWidgetItem(value))

    def _selected_field_index(self) -> int | None:
        rows = self.field_table.selectionModel().selectedRows()
        if not rows:
            return None
        return rows[0].row()

    def _create_iso_config(self) -> None:
        name, ok = QInputDialog.getText(self, "新規設定", "設定名")
        if not ok:
            return
        errors = self.iso_service.create_config(name)
        if errors:
            QMessageBox.warning(self, "入力エラー", "\n".join(errors))
            return
        self._refresh_iso_configs(selected=name.strip())

    def _delete_iso_config(self) -> None:
        name = self.iso_combo.currentText()
        if not name:
            return
        reply = QMessageBox.question(self, "確認", f"設定 '{name}' を削除しますか？")
        if reply == QMessageBox.StandardButton.Yes:
            self.iso_service.delete_config(name)
            self._refresh_iso_configs()

    def _add_field(self) -> None:
        name = self.iso_combo.currentText()
        if not name:
            QMessageBox.information(self, "情報", "先に設定を作成してください。")
            return
        dialog = FieldDescriptorDialog(name, parent=self)
        if not dialog.exec():
            return
        errors = self.iso_service.add_field(name, dialog.result_field())
        if errors:
            QMessageBox.warning(self, "入力エラー", "\n".join(errors))
            return
        self._populate_field_table()

    def _edit_field(self) -> None:
        name = self.iso_combo.currentText()
        index = self._selected_field_index()
        if not name or index is None:
            return
        fields = self.iso_service.get_fields(name)
        dialog = FieldDescriptorDialog(name, initial=fields[index], parent=self)
        if not dialog.exec():
            return
        errors = self.iso_service.update_field(name, index, dialog.result_field())
        if errors:
            QMessageBox.warning(self, "入力エラー", "\n".join(errors))
            return
        self._populate_field_table()

    def _delete_field(self) -> None:
        name = self.iso_combo.currentText()
        index = self._selected_field_index()
        if not name or index is None:
            return
        reply = QMessageBox.question(self, "確認", "選択したフィールドを削除しますか？")
        if reply == QMessageBox.StandardButton.Yes:
            self.iso_service.delete_field(name, index)
            self._populate_field_table()

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802
        if self.manager.status in ACTIVE_STATES:
            reply = QMessageBox.question(
                self,
                "確認",
                "TCP接続が有効です。切断して終了しますか？",
            )
            if reply != QMessageBox.StandardButton.Yes:
                event.ignore()
                return

        self.manager.shutdown()
        self.timer.stop()
        event.accept()
