"""
HTTP transport.

Issues GET (no body) or POST (JSON body) requests against the Irmin REST
server using aiohttp. Responses come back either fully buffered and decoded,
or open with the body unread for the stream decoder.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from .exceptions import IrminConnectionError, IrminHTTPError, ProtocolError

logger = logging.getLogger(__name__)


class HttpTransport:
    """aiohttp based request primitive.

    A transport created without a session creates one on first use and
    closes it in close(). A borrowed session is left open.

    Streams may stay open indefinitely, so only connection setup is
    bounded by a timeout. Callers that need a bounded wait wrap their
    own reads in asyncio.timeout().
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            connect=connect_timeout,
            sock_connect=connect_timeout,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def open(self, url: str, body: Any = None) -> aiohttp.ClientResponse:
        """Send the request and return the response with its body unread.

        Args:
            url: Absolute request URL
            body: JSON-serializable body; None sends a GET

        Raises:
            IrminConnectionError: If the server cannot be reached
            IrminHTTPError: If the server answers with a non-2xx status
        """
        session = self._get_session()
        logger.debug(f"calling: {url}")
        try:
            if body is None:
                response = await session.get(url, timeout=self._timeout)
            else:
                logger.debug(f"post body: {json.dumps(body)}")
                response = await session.post(url, json=body, timeout=self._timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IrminConnectionError(url, e) from e

        if not 200 <= response.status < 300:
            response.release()
            raise IrminHTTPError(url, response.status, response.reason)

        return response

    async def call(self, url: str, body: Any = None) -> Any:
        """Send the request and return the decoded JSON reply.

        Raises:
            IrminConnectionError: If the server cannot be reached
            IrminHTTPError: If the server answers with a non-2xx status
            ProtocolError: If the reply is not valid JSON
        """
        response = await self.open(url, body)
        try:
            raw = await response.read()
        except aiohttp.ClientError as e:
            raise IrminConnectionError(url, e) from e
        finally:
            response.release()

        logger.debug(f"returned: {raw!r}")
        try:
            return json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON reply from {url}", {"cause": str(e)}) from e

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
