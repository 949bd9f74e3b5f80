"""
Tests for the post-install smoke test.
"""

from pathlib import Path

import pytest

from conftest import HELP_TEXT, stub_script

from lmtap.core.errors import VerificationFailed
from lmtap.core.models.formula import SmokeTestSpec
from lmtap.core.services.smoke_test import smoke_test


def _install_stub(tmp_path: Path, content: bytes, mode: int = 0o755) -> Path:
    path = tmp_path / "lm"
    path.write_bytes(content)
    path.chmod(mode)
    return path


class TestSmokeTest:
    def test_passes_on_expected_output(self, tmp_path: Path):
        result = smoke_test(_install_stub(tmp_path, stub_script()))
        assert HELP_TEXT in result.output
        assert result.command[-1] == "--help"
        assert result.elapsed_ms >= 0

    def test_stderr_counts_as_output(self, tmp_path: Path):
        script = b'#!/bin/sh\necho "Lunch Money CLI" >&2\n'
        assert smoke_test(_install_stub(tmp_path, script))

    def test_missing_substring(self, tmp_path: Path):
        path = _install_stub(tmp_path, stub_script("hello"))
        with pytest.raises(VerificationFailed, match="does not contain") as exc:
            smoke_test(path)
        assert exc.value.output.strip() == "hello"
        assert exc.value.stage == "test"

    def test_non_zero_exit(self, tmp_path: Path):
        path = _install_stub(tmp_path, stub_script(exit_code=3))
        with pytest.raises(VerificationFailed, match="exited 3") as exc:
            smoke_test(path)
        assert HELP_TEXT in exc.value.output

    def test_timeout(self, tmp_path: Path):
        path = _install_stub(tmp_path, stub_script(sleep=5))
        with pytest.raises(VerificationFailed, match="timed out"):
            smoke_test(path, timeout=0.5)

    def test_not_executable(self, tmp_path: Path):
        path = _install_stub(tmp_path, stub_script(), mode=0o644)
        with pytest.raises(VerificationFailed, match="Cannot execute"):
            smoke_test(path)

    def test_missing_binary(self, tmp_path: Path):
        with pytest.raises(VerificationFailed, match="Cannot execute"):
            smoke_test(tmp_path / "absent")

    def test_custom_spec(self, tmp_path: Path):
        script = b'#!/bin/sh\n[ "$1" = "--version" ] && echo "lm 0.1.3"\n'
        path = _install_stub(tmp_path, script)
        result = smoke_test(path, SmokeTestSpec(args=("--version",), expect="lm 0.1.3"))
        assert result.command == [str(path), "--version"]

    def test_to_dict(self, tmp_path: Path):
        d = smoke_test(_install_stub(tmp_path, stub_script())).to_dict()
        assert set(d) == {"command", "output", "elapsed_ms"}
