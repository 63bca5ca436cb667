"""
Shared HTTP plumbing for the upstream game-data clients.
"""

import json
from typing import Any, Dict, Optional

import aiohttp

from ..core.logger import ComponentLogger


class UpstreamAPIError(Exception):
    """
    Non-success response from an upstream game-data API.

    Attributes:
        status: HTTP status code, read by the retry classifier
        service: Name of the upstream service
    """

    def __init__(self, message: str, status: Optional[int] = None, service: str = ""):
        super().__init__(message)
        self.status = status
        self.service = service


def compact_json(payload: Any) -> str:
    """Serialize a payload without whitespace, the form that gets signed."""
    return json.dumps(payload, separators=(",", ":"))


class BaseAPIClient:
    """POST-only JSON client on top of an aiohttp session."""

    service_name = "Upstream"

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30,
    ):
        """
        Initialize the client.

        Args:
            base_url: API root without trailing slash
            session: Shared aiohttp session, a private one is created when None
            timeout: Total request timeout in seconds for a private session
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self._logger = ComponentLogger(self.service_name.lower())

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _auth_headers(self, endpoint: str, body: str, payload: Any) -> Dict[str, str]:
        return {}

    async def _post(self, endpoint: str, body_obj: Any, payload: Any = None) -> Any:
        """
        POST a JSON body and decode the JSON response.

        Args:
            endpoint: Path appended to the base URL, e.g. "/guild"
            body_obj: Object sent as the request body
            payload: Part of the body that request signing covers

        Returns:
            Decoded JSON response

        Raises:
            UpstreamAPIError: On any non-2xx response
        """
        body = compact_json(body_obj)
        headers = {
            "Content-Type": "application/json",
            "Accept-Encoding": "br,gzip,deflate",
        }
        headers.update(self._auth_headers(endpoint, body, payload))

        session = self._get_session()
        async with session.post(
            f"{self.base_url}{endpoint}", data=body, headers=headers
        ) as response:
            if response.status >= 400:
                text = await response.text()
                self._logger.warning("upstream_error_response",
                    endpoint=endpoint,
                    status=response.status,
                )
                raise UpstreamAPIError(
                    f"{self.service_name} API error ({response.status}): {text}",
                    status=response.status,
                    service=self.service_name,
                )
            return await response.json(content_type=None)
