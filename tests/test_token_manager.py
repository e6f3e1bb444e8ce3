"""Tests for the OAuth token lifecycle."""

import asyncio
import unittest
from typing import Any
from unittest.mock import Mock
from urllib.parse import parse_qs

import httpx

from sonos_audioclip_tts.config import SonosSettings
from sonos_audioclip_tts.credential_store import CredentialStore
from sonos_audioclip_tts.errors import AuthorizationExchangeFailed
from sonos_audioclip_tts.token_manager import TokenManager

NOW = 1_700_000_000.0
TOKEN_URL = "https://api.sonos.com/login/v3/oauth/access"
REDIRECT_URI = "http://hassio.local:8349/redirect"


class MemoryCredentialStore(CredentialStore):
    """In-memory single-slot store recording every write."""

    def __init__(self, token_info: dict[str, Any] | None = None) -> None:
        super().__init__("token")
        self.token_info = token_info
        self.saved: list[dict[str, Any]] = []

    def get_cached_token(self) -> dict[str, Any] | None:
        return self.token_info

    def save_token_to_cache(self, token_info: dict[str, Any]) -> None:
        self.token_info = token_info
        self.saved.append(token_info)


def stored_token(expires_at: float, refresh_token: str | None = "refresh-1") -> dict[str, Any]:
    return {
        "access_token": "access-1",
        "refresh_token": refresh_token,
        "token_type": "Bearer",
        "expires_at": expires_at,
        "scope": "playback-control-all",
    }


class TestTokenManager(unittest.IsolatedAsyncioTestCase):
    """Test cases for TokenManager state transitions."""

    async def asyncSetUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.transport_error = False
        self.token_response = httpx.Response(
            200,
            json={
                "access_token": "access-2",
                "refresh_token": "refresh-2",
                "token_type": "Bearer",
                "expires_in": 86400,
            },
        )
        self.store = MemoryCredentialStore()
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self._handler))
        self.addAsyncCleanup(self.http_client.aclose)
        self.token_manager = TokenManager(
            settings=SonosSettings(client_id="client", client_secret="secret"),
            redirect_uri=REDIRECT_URI,
            store=self.store,
            http_client=self.http_client,
            logger=Mock(),
            clock=lambda: NOW,
        )

    async def _handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.transport_error:
            raise httpx.ConnectError("connection refused", request=request)
        # Yield so concurrent callers can pile up behind the refresh
        await asyncio.sleep(0.01)
        return self.token_response

    def _form(self, request: httpx.Request) -> dict[str, str]:
        return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}

    async def test_no_stored_credential_requires_authorization(self) -> None:
        credential = await self.token_manager.ensure_token()

        self.assertIsNone(credential)
        self.assertTrue(self.token_manager.auth_required)
        self.assertEqual(self.requests, [])

    async def test_valid_credential_makes_no_network_call(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW + 3600)

        credential = await self.token_manager.ensure_token()

        self.assertIsNotNone(credential)
        self.assertFalse(self.token_manager.auth_required)
        self.assertEqual(self.requests, [])
        self.assertEqual(self.token_manager.authorization_header(), "Bearer access-1")

    async def test_expired_credential_is_refreshed_and_persisted(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1)

        credential = await self.token_manager.ensure_token()

        assert credential is not None  # Type narrowing for mypy
        self.assertFalse(self.token_manager.auth_required)
        self.assertEqual(credential.access_token, "access-2")
        self.assertEqual(credential.expires_at, NOW + 86400)
        self.assertEqual(self.store.saved, [credential.model_dump()])
        self.assertEqual(self.token_manager.credential, credential)
        self.assertEqual(self.token_manager.authorization_header(), "Bearer access-2")

        request = self.requests[0]
        self.assertEqual(str(request.url), TOKEN_URL)
        self.assertEqual(self._form(request), {"grant_type": "refresh_token", "refresh_token": "refresh-1"})
        self.assertTrue(request.headers["Authorization"].startswith("Basic "))

    async def test_failed_refresh_requires_authorization(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1)
        self.token_response = httpx.Response(400, json={"error": "invalid_grant"})

        credential = await self.token_manager.ensure_token()

        self.assertIsNone(credential)
        self.assertTrue(self.token_manager.auth_required)
        self.assertIsNone(self.token_manager.credential)
        self.assertEqual(self.store.saved, [])
        with self.assertRaises(RuntimeError):
            self.token_manager.authorization_header()

    async def test_refresh_transport_error_requires_authorization(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1)

        self.transport_error = True

        self.assertIsNone(await self.token_manager.ensure_token())
        self.assertTrue(self.token_manager.auth_required)

    async def test_credential_without_refresh_token_requires_authorization(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1, refresh_token=None)

        self.assertIsNone(await self.token_manager.ensure_token())
        self.assertTrue(self.token_manager.auth_required)
        self.assertEqual(self.requests, [])

    async def test_concurrent_callers_share_one_refresh(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1)

        results = await asyncio.gather(*(self.token_manager.ensure_token() for _ in range(5)))

        self.assertEqual(len(self.requests), 1)
        self.assertEqual({credential.access_token for credential in results if credential}, {"access-2"})
        self.assertEqual(len(self.store.saved), 1)

    async def test_concurrent_callers_share_one_failed_refresh(self) -> None:
        self.store.token_info = stored_token(expires_at=NOW - 1)
        self.token_response = httpx.Response(401, text="Unauthorized")

        results = await asyncio.gather(*(self.token_manager.ensure_token() for _ in range(3)))

        self.assertEqual(results, [None, None, None])
        self.assertEqual(len(self.requests), 1)
        self.assertTrue(self.token_manager.auth_required)

    async def test_complete_authorization_persists_credential(self) -> None:
        credential = await self.token_manager.complete_authorization("auth-code")

        self.assertFalse(self.token_manager.auth_required)
        self.assertEqual(self.store.token_info, credential.model_dump())
        self.assertEqual(
            self._form(self.requests[0]),
            {"grant_type": "authorization_code", "code": "auth-code", "redirect_uri": REDIRECT_URI},
        )
        # Subsequent calls use the new credential without another exchange
        self.assertEqual(await self.token_manager.ensure_token(), credential)
        self.assertEqual(len(self.requests), 1)

    async def test_complete_authorization_rejected(self) -> None:
        self.token_response = httpx.Response(400, json={"error": "invalid_request", "error_description": "bad code"})

        with self.assertRaises(AuthorizationExchangeFailed) as context:
            await self.token_manager.complete_authorization("bad-code")

        self.assertEqual(context.exception.detail, "bad code")
        self.assertIsNone(self.store.token_info)
        self.assertTrue(self.token_manager.auth_required)

    async def test_non_json_token_response_is_a_failure(self) -> None:
        self.token_response = httpx.Response(502, text="Bad Gateway")

        with self.assertRaises(AuthorizationExchangeFailed) as context:
            await self.token_manager.complete_authorization("auth-code")

        self.assertEqual(context.exception.detail, "Bad Gateway")

    def test_authorize_url(self) -> None:
        url = httpx.URL(self.token_manager.authorize_url())

        self.assertEqual(url.host, "api.sonos.com")
        self.assertEqual(url.path, "/login/v3/oauth")
        self.assertEqual(url.params["client_id"], "client")
        self.assertEqual(url.params["response_type"], "code")
        self.assertEqual(url.params["redirect_uri"], REDIRECT_URI)
        self.assertEqual(url.params["scope"], "playback-control-all")
        self.assertEqual(url.params["state"], "none")
