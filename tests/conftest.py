"""Pytest configuration: make `surge` and `tests.fakes` importable from the repo root."""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
