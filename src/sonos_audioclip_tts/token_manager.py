"""OAuth2 token lifecycle for the Sonos Control API.

The TokenManager owns the single credential of the process. It loads it from the
credential store, refreshes it lazily when it has expired, and tells request
handlers through ``auth_required`` when the user has to go through /auth again.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from sonos_audioclip_tts.config import SonosSettings
from sonos_audioclip_tts.credential_store import CredentialStore
from sonos_audioclip_tts.errors import AuthorizationExchangeFailed
from sonos_audioclip_tts.models import Credential
from sonos_audioclip_tts.upstream import Structured, error_detail, parse_body, transport_detail


class TokenManager:
    """Keeps a valid bearer credential available to request handlers.

    States: unauthorized (no usable credential), authorized with a valid
    credential, authorized with an expired credential. Expiry is checked lazily
    on every ``ensure_token`` call.

    Attributes:
        settings: Sonos client credentials and OAuth endpoints.
        redirect_uri: Redirect URI registered for this service.
        store: Persistent single-slot credential store.
        http_client: Shared async HTTP client for token endpoint calls.
        logger: Logger for authorization events.
        auth_required: True when no valid credential can be obtained without the user.
    """

    def __init__(
        self,
        settings: SonosSettings,
        redirect_uri: str,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        logger: logging.Logger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.redirect_uri = redirect_uri
        self.store = store
        self.http_client = http_client
        self.logger = logger
        self.clock = clock
        self.auth_required = True
        self._credential: Credential | None = None
        # AIDEV-NOTE: Serializes store loads and refreshes so a burst of requests refreshes at most once
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Credential | None:
        return self._credential

    def authorize_url(self) -> str:
        """Build the consent page URL the user is redirected to."""
        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "state": "none",
            "scope": self.settings.scope,
            "redirect_uri": self.redirect_uri,
        }
        return str(httpx.URL(self.settings.authorize_url, params=params))

    async def ensure_token(self) -> Credential | None:
        """Make sure a valid credential is held, refreshing it if it expired.

        Never raises for authorization problems: when no valid credential is
        available ``auth_required`` is set and None is returned.

        Returns:
            The valid credential, or None if authorization is required.
        """
        if self._credential is None:
            async with self._lock:
                if self._credential is None:
                    self._credential = await self._load()
        if self._credential is None:
            self.auth_required = True
            return None
        if not self._credential.is_expired(self.clock()):
            self.auth_required = False
            return self._credential

        async with self._lock:
            credential = self._credential
            if credential is None:
                # Another waiter's refresh failed while we were queued
                self.auth_required = True
                return None
            if not credential.is_expired(self.clock()):
                self.auth_required = False
                return credential

            try:
                refreshed = await self._refresh(credential)
            except AuthorizationExchangeFailed as e:
                self.logger.error("Error refreshing access token: %s", e.detail)
                self._credential = None
                self.auth_required = True
                return None

            await self._save(refreshed)
            self._credential = refreshed
            self.auth_required = False
            self.logger.info("Access token refreshed, valid until %s", time.ctime(refreshed.expires_at))
            return refreshed

    def authorization_header(self) -> str:
        """Return the Authorization header value for the current credential.

        Raises:
            RuntimeError: If called while no credential is held.
        """
        if self._credential is None:
            raise RuntimeError("No credential available, check auth_required before calling the Control API")
        return self._credential.authorization_header

    async def complete_authorization(self, authorization_code: str) -> Credential:
        """Exchange a one-time authorization code for a new credential.

        Args:
            authorization_code: Code passed to the redirect URI.

        Returns:
            The new credential, already persisted.

        Raises:
            AuthorizationExchangeFailed: If the authorization server rejects the code.
        """
        credential = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": authorization_code,
                "redirect_uri": self.redirect_uri,
            }
        )
        async with self._lock:
            await self._save(credential)
            self._credential = credential
            self.auth_required = False
        self.logger.info("Authorization complete, access token valid until %s", time.ctime(credential.expires_at))
        return credential

    async def _refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise AuthorizationExchangeFailed("Stored credential has no refresh token")
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
            previous=credential,
        )

    async def _token_request(self, data: dict[str, str], previous: Credential | None = None) -> Credential:
        try:
            response = await self.http_client.post(
                self.settings.token_url,
                data=data,
                auth=(self.settings.client_id, self.settings.client_secret),
            )
        except httpx.HTTPError as e:
            raise AuthorizationExchangeFailed(transport_detail(e)) from e

        body = parse_body(response.text)
        if response.is_error or not isinstance(body, Structured) or "access_token" not in body.data:
            raise AuthorizationExchangeFailed(error_detail(body, "error_description", "error"))
        return Credential.from_token_response(body.data, now=self.clock(), previous=previous)

    async def _load(self) -> Credential | None:
        token_info: dict[str, Any] | None = await asyncio.to_thread(self.store.get_cached_token)
        if token_info is None:
            return None
        try:
            return Credential.model_validate(token_info)
        except ValueError as e:
            self.logger.error("Ignoring unreadable stored credential: %s", e)
            return None

    async def _save(self, credential: Credential) -> None:
        await asyncio.to_thread(self.store.save_token_to_cache, credential.model_dump())
