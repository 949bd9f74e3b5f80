"""
Smoke test — run the installed binary and look for a known string.

This is the only functional check that the artifact is a working,
correctly-named executable rather than some unrelated file.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from lmtap.core.errors import VerificationFailed
from lmtap.core.models.formula import SmokeTestSpec

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


@dataclass
class SmokeTestResult:
    """Outcome of a passing smoke test."""

    command: list[str]
    output: str
    elapsed_ms: int

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "output": self.output[-_OUTPUT_TAIL:],
            "elapsed_ms": self.elapsed_ms,
        }


def smoke_test(
    binary_path: Path,
    spec: SmokeTestSpec | None = None,
    timeout: float | None = None,
) -> SmokeTestResult:
    """Run ``<binary> <args>`` and assert ``spec.expect`` is in its output.

    stdout and stderr are merged, like a shell ``2>&1``.

    Args:
        binary_path: The installed executable.
        spec: What to run and expect (default: ``--help`` /
            ``"Lunch Money CLI"``).
        timeout: Overrides ``spec.timeout_seconds``.

    Raises:
        VerificationFailed: If the binary cannot be executed, exits
            non-zero, times out, or its output lacks the substring.
    """
    spec = spec or SmokeTestSpec()
    timeout = timeout if timeout is not None else spec.timeout_seconds
    cmd = [str(binary_path), *spec.args]

    logger.info("Smoke test: %s (expect %r)", " ".join(cmd), spec.expect)
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise VerificationFailed(f"'{' '.join(cmd)}' timed out after {timeout:g}s") from e
    except OSError as e:
        raise VerificationFailed(f"Cannot execute {binary_path}: {e}") from e
    elapsed_ms = int((time.monotonic() - start) * 1000)

    output = result.stdout or ""
    if result.returncode != 0:
        raise VerificationFailed(
            f"'{' '.join(cmd)}' exited {result.returncode}",
            output=output[-_OUTPUT_TAIL:],
        )
    if spec.expect not in output:
        raise VerificationFailed(
            f"Output of '{' '.join(cmd)}' does not contain {spec.expect!r}",
            output=output[-_OUTPUT_TAIL:],
        )

    logger.debug("Smoke test passed in %dms", elapsed_ms)
    return SmokeTestResult(command=cmd, output=output, elapsed_ms=elapsed_ms)
