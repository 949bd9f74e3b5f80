"""
Runtime settings — where the tap lives and where binaries go.

Resolved in precedence order:
    CLI option  >  LMTAP_* env var  >  default
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

from lmtap.core.data import BUNDLED_TAP_DIR

ENV_PREFIX = "LMTAP_"

DEFAULT_FETCH_TIMEOUT = 60.0
DEFAULT_TEST_TIMEOUT = 10.0


def _default_bin_dir() -> Path:
    return Path.home() / ".local" / "bin"


def _default_state_dir() -> Path:
    xdg = os.environ.get("XDG_STATE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "state"
    return base / "lmtap"


class Settings(BaseModel):
    """Resolved runtime settings for one invocation."""

    tap_dir: Path = BUNDLED_TAP_DIR
    bin_dir: Path = Field(default_factory=_default_bin_dir)
    state_dir: Path = Field(default_factory=_default_state_dir)
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    test_timeout: float = DEFAULT_TEST_TIMEOUT

    @property
    def receipts_dir(self) -> Path:
        return self.state_dir / "receipts"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.ndjson"

    @classmethod
    def resolve(cls, **overrides: object) -> Settings:
        """Build settings from env vars, with non-None overrides on top.

        Args:
            **overrides: Field values from CLI options. ``None`` means
                "not given" and falls through to the environment.
        """
        values: dict[str, object] = {}
        for name in cls.model_fields:
            env_value = os.environ.get(ENV_PREFIX + name.upper())
            if env_value:
                values[name] = env_value
        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls.model_validate(values)
        return settings.model_copy(
            update={
                "tap_dir": settings.tap_dir.expanduser(),
                "bin_dir": settings.bin_dir.expanduser(),
                "state_dir": settings.state_dir.expanduser(),
            }
        )
