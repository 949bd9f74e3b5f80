"""
Binary placement — atomic write into the bin directory.

The binary is written to a temp file in the target directory, made
executable, and renamed over the destination, so readers see either
the old file or the new one and never a partial write. Work in one
bin directory serializes on an ``fcntl`` lock file, the only mutual
exclusion in the pipeline. The install use case holds it from
placement through the smoke test and the receipt write.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from lmtap.core.errors import InstallError

logger = logging.getLogger(__name__)

LOCK_FILE = ".lmtap.lock"
EXECUTABLE_MODE = 0o755


def ensure_bin_dir(bin_dir: Path) -> Path:
    """Create ``bin_dir`` if needed and check it is writable.

    Raises:
        InstallError: If it cannot be created or written to.
    """
    try:
        bin_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise InstallError(f"Cannot create bin directory {bin_dir}: {e}") from e
    if not bin_dir.is_dir():
        raise InstallError(f"Bin path is not a directory: {bin_dir}")
    if not os.access(bin_dir, os.W_OK | os.X_OK):
        raise InstallError(f"Bin directory is not writable: {bin_dir}")
    return bin_dir


@contextlib.contextmanager
def directory_lock(directory: Path) -> Iterator[None]:
    """Hold an exclusive lock on ``directory`` for the duration of the block."""
    lock_path = directory / LOCK_FILE
    try:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as e:
        raise InstallError(f"Cannot open lock file {lock_path}: {e}") from e
    try:
        logger.debug("Waiting for lock %s", lock_path)
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def install_binary(data: bytes, bin_dir: Path, binary_name: str, *, lock: bool = True) -> Path:
    """Atomically place ``data`` at ``bin_dir/binary_name`` as an executable.

    Re-installing replaces the previous file in one rename; no temp
    file is left behind on success or failure. Pass ``lock=False`` when
    the caller already holds ``directory_lock(bin_dir)``.

    Returns:
        Path of the installed binary.

    Raises:
        InstallError: On permission, disk-space, or other OS errors.
    """
    ensure_bin_dir(bin_dir)
    target = bin_dir / binary_name

    with directory_lock(bin_dir) if lock else contextlib.nullcontext():
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=bin_dir, prefix=f".{binary_name}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, EXECUTABLE_MODE)
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            raise InstallError(f"Cannot write {target}: {e}") from e
        finally:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)

    logger.info("Installed %s (%d bytes)", target, len(data))
    return target


def remove_binary(path: Path, *, lock: bool = True) -> bool:
    """Remove an installed binary under its directory's lock.

    Pass ``lock=False`` when the caller already holds it.

    Returns:
        True if a file was removed, False if it was already gone.

    Raises:
        InstallError: If the file exists but cannot be removed.
    """
    if not path.parent.is_dir():
        return False
    with directory_lock(path.parent) if lock else contextlib.nullcontext():
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise InstallError(f"Cannot remove {path}: {e}") from e
    logger.info("Removed %s", path)
    return True
