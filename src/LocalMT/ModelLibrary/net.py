# === NAVMAP v1 ===
# {
#   "module": "LocalMT.ModelLibrary.net",
#   "purpose": "Build the async HTTPX client and byte fetcher used for catalog refreshes",
#   "sections": [
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Async HTTPX plumbing for the remote catalog.

The catalog fetcher only needs "GET this URL, give me the body": it accepts
any ``async (url) -> bytes`` callable.  :class:`HttpxFetcher` is the default
implementation and maps every transport or HTTP status failure onto
:class:`~LocalMT.ModelLibrary.errors.NetworkError`.
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Awaitable, Callable, Optional

import certifi
import httpx

from .errors import NetworkError
from .settings import CatalogConfiguration

__all__ = ["FetchBytes", "build_async_client", "HttpxFetcher"]

LOGGER = logging.getLogger("LocalMT.ModelLibrary.net")

FetchBytes = Callable[[str], Awaitable[bytes]]

# --- Client construction helpers ----------------------------------------------


def _create_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def build_async_client(
    config: Optional[CatalogConfiguration] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Return an :class:`httpx.AsyncClient` configured from ``config``.

    ``transport`` is mainly for tests (``httpx.MockTransport``); when given,
    no SSL context is built.
    """

    cfg = config or CatalogConfiguration()
    timeout = httpx.Timeout(cfg.timeout_sec, connect=cfg.connect_timeout_sec)
    kwargs = {
        "timeout": timeout,
        "headers": {"User-Agent": cfg.user_agent, "Accept": "application/json"},
        "follow_redirects": True,
    }
    if transport is not None:
        return httpx.AsyncClient(transport=transport, **kwargs)
    return httpx.AsyncClient(verify=_create_ssl_context(), **kwargs)


# --- Public API ---------------------------------------------------------------


class HttpxFetcher:
    """Fetch response bodies with a shared async client.

    The client is created lazily on first use so constructing a fetcher is
    free of side effects; :meth:`aclose` releases it.
    """

    def __init__(
        self,
        config: Optional[CatalogConfiguration] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or CatalogConfiguration()
        self._client = client
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_async_client(self.config, transport=self._transport)
        return self._client

    async def __call__(self, url: str) -> bytes:
        client = self._get_client()
        start = time.perf_counter()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"Catalog request to {url} failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Catalog request to {url} failed: {exc}") from exc
        LOGGER.debug(
            "catalog response received",
            extra={
                "stage": "catalog",
                "url": url,
                "status": response.status_code,
                "bytes": len(response.content),
                "elapsed_sec": round(time.perf_counter() - start, 3),
            },
        )
        return response.content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
