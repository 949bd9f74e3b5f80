"""
Bundled tap data.

The formula files shipped with the package live in
``lmtap/core/data/formula/``. They are the default tap when neither
``--tap`` nor ``LMTAP_TAP_DIR`` is given.
"""

from __future__ import annotations

from pathlib import Path

_DATA_DIR = Path(__file__).parent

BUNDLED_TAP_DIR = _DATA_DIR / "formula"
