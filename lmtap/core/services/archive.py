"""
Artifact unpacking — pull the binary out of a release tarball.

Release assets are ``.tar.gz`` archives containing the executable.
Only the one regular-file member named after the binary is read;
nothing is extracted to disk, so links, devices and ``../`` paths
inside the archive never touch the filesystem. A payload that is
not a tar archive at all is taken to be the bare executable.
"""

from __future__ import annotations

import io
import logging
import tarfile
from pathlib import PurePosixPath

from lmtap.core.errors import InstallError

logger = logging.getLogger(__name__)


def _is_safe_member(member: tarfile.TarInfo) -> bool:
    path = PurePosixPath(member.name)
    return not path.is_absolute() and ".." not in path.parts


def extract_binary(payload: bytes, binary_name: str) -> bytes:
    """Return the bytes of ``binary_name`` from a (possibly archived) payload.

    Raises:
        InstallError: If the payload is an archive without a regular
            file named ``binary_name``, or the archive is damaged.
    """
    try:
        tf = tarfile.open(fileobj=io.BytesIO(payload), mode="r:*")
    except tarfile.ReadError:
        logger.debug("Payload is not a tar archive; installing it as-is")
        return payload
    except (tarfile.TarError, EOFError) as e:
        raise InstallError(f"Cannot open release archive: {e}") from e

    with tf:
        try:
            members = tf.getmembers()
        except (tarfile.TarError, EOFError) as e:
            raise InstallError(f"Damaged release archive: {e}") from e

        candidates = [
            m for m in members
            if PurePosixPath(m.name).name == binary_name
        ]
        for member in sorted(candidates, key=lambda m: len(PurePosixPath(m.name).parts)):
            if not member.isfile():
                logger.warning("Skipping archive member %s: not a regular file", member.name)
                continue
            if not _is_safe_member(member):
                logger.warning("Skipping archive member %s: unsafe path", member.name)
                continue
            extracted = tf.extractfile(member)
            if extracted is None:
                continue
            data = extracted.read()
            logger.debug("Extracted %s (%d bytes) from archive", member.name, len(data))
            return data

    raise InstallError(
        f"Release archive has no file named '{binary_name}' "
        f"(members: {', '.join(m.name for m in members[:10]) or 'none'})"
    )
