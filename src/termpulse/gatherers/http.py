"""Shared aiohttp plumbing for HTTP backed gatherers."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from termpulse.gatherers.base import Gatherer
from termpulse.resilience import BackendError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 7.0  # seconds


class HTTPGatherer(Gatherer):
    """Base class for gatherers talking JSON over HTTP.

    The client session is created lazily on first use so gatherers can be
    built outside of a running event loop.
    """

    def __init__(
        self,
        address: str,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the HTTP gatherer.

        Args:
            address: Base URL of the backend, e.g. http://localhost:9090.
            http_timeout: Total timeout for one HTTP request in seconds.
            session: Optional externally owned session.
        """
        self.address = address.rstrip("/")
        self.http_timeout = http_timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.http_timeout),
            )
            self._owns_session = True
        return self._session

    async def _get_json(
        self,
        path: str,
        params: dict[str, str],
        **request_kwargs: Any,
    ) -> Any:
        """GET a JSON document from the backend.

        Raises:
            BackendError: On connection errors, non-2xx status or invalid JSON.
        """
        url = f"{self.address}{path}"
        session = self._get_session()
        try:
            async with session.get(url, params=params, **request_kwargs) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise BackendError(
                        f"{url} returned {response.status}: {body[:200]}",
                        status=response.status,
                    )
                return await response.json(content_type=None)
        except TimeoutError:
            # aiohttp timeouts are TimeoutError subclasses; keep them unwrapped
            raise
        except aiohttp.ClientResponseError as e:
            raise BackendError(f"{url} request failed: {e.message}", status=e.status) from e
        except aiohttp.ClientError as e:
            raise BackendError(f"{url} request failed: {e}") from e
        except ValueError as e:
            raise BackendError(f"{url} returned invalid JSON: {e}") from e

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
