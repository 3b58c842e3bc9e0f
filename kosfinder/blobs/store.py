"""Blob/image store used for listing cover and gallery images.

Images are uploaded by the browser straight to the blob service; KosFinder
only stores the returned references and URLs on the listing row.  The one
thing the registry needs back from the store is *deletion by reference*, to
drop images orphaned by a listing delete or an image replacement.

:class:`BlobStore` is that narrow interface.  :class:`HttpBlobStore` talks to
a Vercel-Blob-style REST API (``POST {base_url}/delete`` with a JSON
``{"urls": [...]}`` body, bearer-token auth) over :class:`httpx.AsyncClient`,
with tenacity-managed retries on transient failures.

Typical usage::

    async with HttpBlobStore(settings.blob_api_url, settings.blob_api_token) as store:
        await store.delete_many(["kos-images/1712-cover.jpg"])

:func:`build_blob_store` does the same from :class:`~kosfinder.core.settings.Settings`,
returning ``None`` when the store is not configured.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from types import TracebackType
from typing import Final, Protocol, runtime_checkable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from kosfinder.core.exceptions import BlobStoreError
from kosfinder.core.settings import Settings

__all__ = ["BlobStore", "HttpBlobStore", "build_blob_store"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Gateway and throttling responses worth another try.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

_DEFAULT_TIMEOUT: Final[float] = 10.0

#: Tries per delete call, the first one included.
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Longest back-off step in seconds, before jitter.
_MAX_BACKOFF_BASE: Final[float] = 30.0


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


@runtime_checkable
class BlobStore(Protocol):
    """Deletion-by-reference interface consumed by the listing registry."""

    async def delete_many(self, references: Sequence[str]) -> None:
        """Delete every blob in *references*.

        Raises:
            BlobStoreError: If the store rejects the request or is unreachable.
        """
        ...


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableBlobError(BlobStoreError):
    """Internal: signals a transient status for tenacity to retry.

    Never escapes :meth:`HttpBlobStore._post_with_retry`.
    """


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class HttpBlobStore:
    """REST client for the blob service.

    Use as an ``async with`` context manager to guarantee the underlying
    connection pool is closed on exit.

    Args:
        base_url: Blob API root, e.g. ``"https://blob.vercel-storage.com"``.
        token: Bearer token with delete permission.
        max_attempts: Total attempts including the initial try (at least 1).
        backoff: Multiplier on the exponential back-off (``0`` disables
            sleeping between attempts).
        transport: Optional custom :mod:`httpx` transport.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts!r}.")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> HttpBlobStore:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def delete_many(self, references: Sequence[str]) -> None:
        """Delete the blobs named by *references* in a single API call.

        An empty sequence is a no-op.

        Raises:
            BlobStoreError: On a non-retryable status, or once the retry
                budget is exhausted.
        """
        refs = [ref for ref in references if ref]
        if not refs:
            return
        await self._post_with_retry("/delete", {"urls": refs})
        logger.debug("Deleted %d blob(s)", len(refs))

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("HttpBlobStore session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=_DEFAULT_TIMEOUT,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/json",
                },
            )
        return self._http

    def _wait(self, retry_state: RetryCallState) -> float:
        """Exponential back-off with jitter: ~1 s, 2 s, 4 s, … times ``backoff``."""
        attempt = max(retry_state.attempt_number, 1)
        base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
        return (base + random.uniform(0.0, base / 2)) * self._backoff

    async def _post_with_retry(self, path: str, payload: dict) -> httpx.Response:
        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Blob API POST %s: attempt %d/%d failed (%s). Retrying…",
                path,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        try:
            async for attempt in AsyncRetrying(
                wait=self._wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type((_RetryableBlobError, httpx.TransportError)),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    return await self._single_post(path, payload)
        except httpx.TransportError as exc:
            raise BlobStoreError(f"Blob API unreachable: {exc}") from exc
        except _RetryableBlobError as exc:
            raise BlobStoreError(
                f"Blob API still failing after {self._max_attempts} attempts",
                status_code=exc.status_code,
            ) from exc
        raise AssertionError("tenacity exited without a response or exception")

    async def _single_post(self, path: str, payload: dict) -> httpx.Response:
        client = await self._ensure_client()
        response = await client.post(path, json=payload)

        if response.is_success:
            return response
        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableBlobError(
                f"Transient HTTP {response.status_code}",
                status_code=response.status_code,
            )
        raise BlobStoreError(response.text[:200], status_code=response.status_code)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_blob_store(settings: Settings) -> HttpBlobStore | None:
    """Build the blob store from *settings*, or ``None`` if it is not configured.

    The caller owns the returned store and must ``await store.close()``.
    """
    if not settings.blob_configured:
        logger.info("Blob store not configured; image cleanup disabled")
        return None
    return HttpBlobStore(
        settings.blob_api_url,
        settings.blob_api_token,
        max_attempts=settings.blob_max_attempts,
    )
