"""Toolchain fetch module.

This module handles:
- URL construction for toolchain indexes and component blobs
- Fetching indexes from the remote store
- Streaming component downloads with content-hash verification
"""

from __future__ import annotations

import hashlib
import logging

import httpx

logger = logging.getLogger(__name__)

# Timeout for index requests (seconds)
INDEX_TIMEOUT = 30

# Timeout for component downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


class FetchError(Exception):
    """Raised when a request to the remote store fails."""

    def __init__(
        self,
        message: str,
        code: str = "fetch_error",
        status_code: int | None = None,
    ) -> None:
        """Initialize FetchError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            status_code: HTTP status code when the server answered.
        """
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class VerificationError(Exception):
    """Raised when a downloaded blob does not match its digest."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message)
        self.code = code


def index_key(system: str, compiler_version: str) -> str:
    """Return the store-relative key of a toolchain index."""
    return f"{system}/rust-{compiler_version}"


def build_index_url(store_url: str, system: str, compiler_version: str) -> str:
    """Build the URL of the toolchain index for a platform.

    Args:
        store_url: Base URL of the remote store.
        system: Short system name (e.g. 'x86_64-linux').
        compiler_version: Declared compiler version.

    Returns:
        Index URL.
    """
    return f"{store_url.rstrip('/')}/toolchains/{index_key(system, compiler_version)}.json"


def build_blob_url(store_url: str, digest: str) -> str:
    """Build the URL of a content-addressed component blob."""
    return f"{store_url.rstrip('/')}/blobs/{digest}"


def fetch_index(
    client: httpx.Client,
    url: str,
    timeout: float = INDEX_TIMEOUT,
) -> bytes:
    """Fetch a toolchain index.

    Args:
        client: HTTPX client instance.
        url: Index URL.
        timeout: Request timeout in seconds.

    Returns:
        Raw index bytes.

    Raises:
        FetchError: If the request fails.
    """
    logger.debug("Fetching toolchain index from %s", url)

    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
        return response.content

    except httpx.HTTPStatusError as e:
        raise FetchError(
            f"HTTP error fetching index {url}: {e.response.status_code}",
            code="http_error",
            status_code=e.response.status_code,
        ) from e
    except httpx.TimeoutException as e:
        raise FetchError(f"Timeout fetching index {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise FetchError(
            f"Network error fetching index {url}: {e}",
            code="network_error",
        ) from e


def fetch_blob(
    client: httpx.Client,
    url: str,
    expected_digest: str,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> bytes:
    """Download a component blob and verify its SHA-256.

    Args:
        client: HTTPX client instance.
        url: Blob URL.
        expected_digest: SHA-256 hex digest the content must hash to.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        Blob bytes.

    Raises:
        FetchError: If the download fails.
        VerificationError: If the content hash does not match.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            sha256 = hashlib.sha256()
            chunks: list[bytes] = []
            for chunk in response.iter_bytes(chunk_size):
                sha256.update(chunk)
                chunks.append(chunk)

    except httpx.HTTPStatusError as e:
        raise FetchError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
            status_code=e.response.status_code,
        ) from e
    except httpx.TimeoutException as e:
        raise FetchError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise FetchError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e

    computed = sha256.hexdigest()
    if computed != expected_digest.lower():
        raise VerificationError(
            f"Checksum mismatch for {url}: expected {expected_digest}, got {computed}"
        )

    data = b"".join(chunks)
    logger.info("Downloaded %s (%d bytes)", expected_digest[:16], len(data))
    return data


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "FetchError",
    "INDEX_TIMEOUT",
    "VerificationError",
    "build_blob_url",
    "build_index_url",
    "fetch_blob",
    "fetch_index",
    "index_key",
]
