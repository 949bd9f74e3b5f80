"""
Fetch and verify — download an artifact, then check its SHA-256.

The whole payload is read into memory before hashing, so a digest
check always completes before anything is written to disk. Fetch
failures are retryable (``FetchError``); digest failures are not.
"""

from __future__ import annotations

import hashlib
import logging
import urllib.error
import urllib.request
from urllib.parse import urlparse

from lmtap import __version__
from lmtap.core.errors import DigestMismatch, FetchError, FormulaError, PlaceholderDigest
from lmtap.core.models.formula import is_placeholder_digest, is_valid_digest

logger = logging.getLogger(__name__)

USER_AGENT = f"lmtap/{__version__}"

_CHUNK = 64 * 1024

# Plain http:// is only allowed against the local machine
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def _check_transport(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme in ("https", "file"):
        return
    if parsed.scheme == "http" and parsed.hostname in _LOOPBACK_HOSTS:
        return
    err = FetchError(f"Refusing insecure or unsupported URL: {url}", url=url)
    # Policy refusals do not go away on retry
    err.retryable = False
    raise err


class _CheckedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Apply the transport policy to every redirect hop."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        _check_transport(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


_opener = urllib.request.build_opener(_CheckedRedirectHandler)


def fetch(url: str, timeout: float = 60.0) -> bytes:
    """Download ``url`` completely into memory.

    No retries here; the caller decides (see ``reliability.retry``).

    Args:
        url: ``https://`` URL (``file://`` and loopback ``http://`` also
            accepted).
        timeout: Socket timeout in seconds.

    Returns:
        The response body.

    Raises:
        FetchError: On non-2xx status, connection failure, or timeout.
    """
    _check_transport(url)
    logger.info("Fetching %s", url)

    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with _opener.open(req, timeout=timeout) as resp:
            status = getattr(resp, "status", None)
            if status is not None and not 200 <= status < 300:
                raise FetchError(f"HTTP {status} from {url}", url=url, status=status)
            chunks = []
            for chunk in iter(lambda: resp.read(_CHUNK), b""):
                chunks.append(chunk)
    except FetchError:
        raise
    except urllib.error.HTTPError as e:
        raise FetchError(f"HTTP {e.code} from {url}", url=url, status=e.code) from e
    except urllib.error.URLError as e:
        raise FetchError(f"Cannot reach {url}: {e.reason}", url=url) from e
    except TimeoutError as e:
        raise FetchError(f"Timed out after {timeout:g}s fetching {url}", url=url) from e
    except OSError as e:
        raise FetchError(f"Download error for {url}: {e}", url=url) from e

    data = b"".join(chunks)
    logger.info("Fetched %d bytes from %s", len(data), url)
    return data


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def verify_digest(data: bytes, expected: str) -> str:
    """Check ``data`` against an expected SHA-256 hex digest.

    Args:
        data: The full downloaded payload.
        expected: 64 hex characters; compared case-insensitively.

    Returns:
        The computed digest.

    Raises:
        FormulaError: If ``expected`` is not a 64-character hex string.
        PlaceholderDigest: If ``expected`` is the all-zero sentinel.
        DigestMismatch: If the computed digest differs.
    """
    if not is_valid_digest(expected):
        raise FormulaError(f"Malformed sha256 in formula: {expected!r}")

    actual = sha256_hex(data)
    expected = expected.lower()

    if is_placeholder_digest(expected):
        raise PlaceholderDigest(
            "Release has a placeholder sha256 (unpublished); refusing to install",
            expected=expected,
            actual=actual,
        )

    if actual != expected:
        raise DigestMismatch(
            f"SHA256 mismatch: expected {expected}, got {actual}. "
            "The download is corrupt or has been tampered with.",
            expected=expected,
            actual=actual,
        )

    logger.debug("Digest verified: %s", actual)
    return actual

