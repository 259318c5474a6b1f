from __future__ import annotations

import sys

from PySide6.QtWidgets import QApplication

from frame_tester.infrastructure import configure_logging
from frame_tester.presentation import MainWindow


def main() -> int:
    configure_logging()
    app = QApplication(sys.argv)
    app.setApplicationName("Frame Tester")
    window = MainWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
