from __future__ import annotations

import os
from pathlib import Path


APP_DIR_NAME = ".frame_tester"
HOME_ENV_VAR = "FRAME_TESTER_HOME"


def get_app_data_dir() -> Path:
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    root = Path(override) if override else Path.home() / APP_DIR_NAME
    root.mkdir(parents=True, exist_ok=True)
    return root
