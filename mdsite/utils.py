"""Small path helpers shared by the build and the dev server."""

from __future__ import annotations

import os
from pathlib import Path


def display_path(path: Path) -> str:
    """Path relative to the working directory when possible, for log lines."""
    try:
        return os.path.relpath(path)
    except ValueError:  # different drive on Windows
        return str(path)
