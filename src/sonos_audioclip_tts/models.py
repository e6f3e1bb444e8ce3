"""Data models for the audio clip bridge.

Pydantic models for the OAuth credential and clip payloads, dataclasses for
dispatch outcomes, and the SQLModel table backing the on-disk credential store.
"""

import enum
import re
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlmodel import Field, SQLModel

# Capability flag advertised by players that accept audio clips
AUDIO_CLIP_CAPABILITY = "AUDIO_CLIP"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class CredentialRecord(SQLModel, table=True):
    """Database row holding the serialized OAuth credential.

    Attributes:
        key: Fixed key name; the store only ever uses one row.
        token: JSON string containing the credential.
    """

    key: str = Field(primary_key=True)
    token: str


class Credential(BaseModel):
    """One OAuth2 token grant issued by the Sonos authorization server.

    Attributes:
        access_token: Bearer token presented to the Control API.
        refresh_token: Token used to obtain a new access token.
        token_type: Token type reported by the authorization server.
        expires_at: Absolute expiry as a UNIX timestamp.
        scope: Granted scope, if reported.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: float
    scope: str | None = None

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        now: float | None = None,
        previous: "Credential | None" = None,
    ) -> "Credential":
        """Build a credential from a token endpoint response.

        Args:
            payload: Parsed JSON body of the token endpoint.
            now: Issue time, defaults to the current time.
            previous: Credential being refreshed; its refresh token is kept when
                the response does not rotate it.

        Returns:
            New credential with an absolute expiry timestamp.
        """
        issued_at = time.time() if now is None else now
        refresh_token = payload.get("refresh_token")
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            token_type=payload.get("token_type") or "Bearer",
            expires_at=issued_at + float(payload.get("expires_in", 0)),
            scope=payload.get("scope"),
        )

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


class ClipCapableDevice(BaseModel):
    """A player that accepts audio clips."""

    id: str
    name: str


class Player(BaseModel):
    """A player entry of a household groups listing.

    Attributes:
        id: Player identifier used in Control API paths.
        name: Display name; falls back to the identifier when absent.
        capabilities: Feature flags the player advertises.
    """

    id: str
    name: str | None = None
    capabilities: list[str] | None = None

    @property
    def accepts_audio_clips(self) -> bool:
        return AUDIO_CLIP_CAPABILITY in (self.capabilities or [])

    def to_device(self) -> ClipCapableDevice:
        return ClipCapableDevice(id=self.id, name=self.name or self.id)


class Priority(enum.StrEnum):
    """Clip priority accepted by the audioClip endpoint."""

    LOW = "LOW"
    HIGH = "HIGH"

    @classmethod
    def parse(cls, value: str | None) -> "Priority | None":
        """Match a priority case-insensitively; unknown values are dropped."""
        if value is None:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


def coerce_volume(value: str | int | None) -> int | None:
    """Coerce a volume query value to an integer.

    Leading integer digits are used ("40" and "40.5" both give 40); values
    without any leading digits are dropped.
    """
    if value is None or isinstance(value, int):
        return value
    match = _LEADING_INT.match(value)
    if match is None:
        return None
    return int(match.group(1))


class ClipRequest(BaseModel):
    """Body of one audioClip call.

    Either ``stream_url`` is set, or the clip falls back to the built-in chime.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    app_id: str = PydanticField(alias="appId")
    stream_url: str | None = PydanticField(default=None, alias="streamUrl")
    clip_type: str | None = PydanticField(default=None, alias="clipType")
    volume: int | None = None
    priority: Priority | None = None

    @classmethod
    def build(
        cls,
        name: str,
        app_id: str,
        stream_url: str | None = None,
        volume: str | int | None = None,
        priority: str | None = None,
    ) -> "ClipRequest":
        """Build a clip request from raw query values."""
        return cls(
            name=name,
            app_id=app_id,
            stream_url=stream_url or None,
            clip_type=None if stream_url else "CHIME",
            volume=coerce_volume(volume),
            priority=Priority.parse(priority),
        )

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class DeviceOutcome:
    """Result of sending a clip to one device."""

    device_id: str
    success: bool
    error: Any = None


@dataclass
class DispatchResult:
    """Aggregated verdict of sending one clip to one or more devices.

    Attributes:
        success: True only if every device acknowledged the clip.
        error: Combined error detail of the failing devices, None on success.
        outcomes: Individual outcomes in target order.
    """

    success: bool
    error: Any = None
    outcomes: list[DeviceOutcome] = field(default_factory=list)

    @classmethod
    def from_outcomes(cls, outcomes: list[DeviceOutcome]) -> "DispatchResult":
        failures = [outcome for outcome in outcomes if not outcome.success]
        if not failures:
            return cls(success=True, outcomes=outcomes)
        if len(failures) == 1:
            return cls(success=False, error=failures[0].error, outcomes=outcomes)
        return cls(
            success=False,
            error="; ".join(str(outcome.error) for outcome in failures),
            outcomes=outcomes,
        )

    def to_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True}
        return {"success": False, "error": self.error}
