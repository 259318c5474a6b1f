from datetime import datetime
import os
from pathlib import Path
import tempfile
import unittest
from unittest import mock

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtWidgets import QApplication

from frame_tester.domain import Direction, DisplayRecord
from frame_tester.infrastructure import DisplayLogWriter
from frame_tester.presentation import MainWindow


class TestMainWindowDisplay(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QApplication.instance() or QApplication([])

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        patcher = mock.patch.dict(os.environ, {"FRAME_TESTER_HOME": self._tmp.name})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)

    def open_window(self) -> MainWindow:
        window = MainWindow()
        self.addCleanup(window.deleteLater)
        self.addCleanup(window.manager.shutdown)
        self.addCleanup(window.timer.stop)
        return window

    def test_display_keeps_every_persisted_record(self) -> None:
        writer = DisplayLogWriter(Path(self._tmp.name) / "display_log.jsonl")
        for index in range(5100):
            writer.append(
                DisplayRecord(
                    direction=Direction.RECEIVED,
                    text=f"frame-{index}",
                    hex=f"frame-{index}".encode("latin-1").hex(),
                    timestamp=datetime(2026, 1, 1, 12, 0, 0),
                )
            )

        window = self.open_window()
        document = window.display_view.document()

        self.assertEqual(document.maximumBlockCount(), 0)
        self.assertGreaterEqual(document.blockCount(), 5100)
        self.assertIn("frame-0 ", window.display_view.toPlainText())
        self.assertIn("frame-5099 ", window.display_view.toPlainText())

    def test_clear_empties_display_and_log(self) -> None:
        writer = DisplayLogWriter(Path(self._tmp.name) / "display_log.jsonl")
        writer.append(
            DisplayRecord(
                direction=Direction.SENT,
                text="ping",
                hex="70696e67",
                timestamp=datetime(2026, 1, 1, 12, 0, 0),
            )
        )
        window = self.open_window()
        self.assertIn("ping", window.display_view.toPlainText())

        window.clear_log_btn.click()

        self.assertEqual(window.display_view.toPlainText(), "")
        self.assertEqual(writer.load(), [])


if __name__ == "__main__":
    unittest.main()
