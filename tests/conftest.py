"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

# Let the suite run from a checkout without an editable install.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))
