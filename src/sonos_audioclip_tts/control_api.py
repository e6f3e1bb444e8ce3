"""Bearer-authenticated access to the Sonos Control API."""

import logging
from typing import Any

import httpx

from sonos_audioclip_tts.errors import AuthorizationExchangeFailed, UpstreamTransportError
from sonos_audioclip_tts.token_manager import TokenManager
from sonos_audioclip_tts.upstream import ParsedBody, parse_body, transport_detail


class ControlApiClient:
    """Issues Control API calls with the current bearer credential.

    Callers must have checked ``token_manager.auth_required`` first.

    Attributes:
        http_client: Shared async HTTP client (carries the request timeout).
        token_manager: Source of the Authorization header.
        base_url: Control API base URL, without trailing slash.
        logger: Logger for request tracing.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        base_url: str,
        logger: logging.Logger,
    ) -> None:
        self.http_client = http_client
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")
        self.logger = logger

    async def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> ParsedBody:
        """Send one request and return its parsed body.

        Args:
            method: HTTP method.
            path: Path below the Control API base URL.
            body: Optional JSON body.

        Returns:
            Structured or RawText body, regardless of the HTTP status.

        Raises:
            AuthorizationExchangeFailed: If a failed refresh dropped the credential
                after the caller checked authorization.
            UpstreamTransportError: On connection errors and timeouts.
        """
        # A concurrent request may have failed to refresh since auth_required was checked
        if self.token_manager.credential is None:
            raise AuthorizationExchangeFailed("Authorization expired, visit /auth to authorize again")
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": self.token_manager.authorization_header(),
        }
        self.logger.debug("%s %s %s", method, url, body)
        try:
            response = await self.http_client.request(method, url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(transport_detail(e)) from e
        return parse_body(response.text)

    async def get(self, path: str) -> ParsedBody:
        return await self.request("GET", path)

    async def post(self, path: str, body: dict[str, Any]) -> ParsedBody:
        return await self.request("POST", path, body)
