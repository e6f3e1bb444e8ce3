"""Discovery of clip-capable players across the user's households."""

import logging

from pydantic import ValidationError

from sonos_audioclip_tts.control_api import ControlApiClient
from sonos_audioclip_tts.errors import UpstreamProtocolError, UpstreamTransportError
from sonos_audioclip_tts.models import ClipCapableDevice, Player
from sonos_audioclip_tts.upstream import Structured, error_detail


class DeviceDirectory:
    """Enumerates households and the players in them that accept audio clips.

    Attributes:
        control_api: Authenticated Control API client.
        logger: Logger for skipped households.
    """

    def __init__(self, control_api: ControlApiClient, logger: logging.Logger) -> None:
        self.control_api = control_api
        self.logger = logger

    async def list_households(self) -> list[str]:
        """Return the identifiers of all households of the authorized user.

        Raises:
            UpstreamTransportError: If the Control API cannot be reached.
            UpstreamProtocolError: If the response has no household list; the
                detail is the upstream error field or the raw response text.
        """
        body = await self.control_api.get("/households")
        if not isinstance(body, Structured) or not isinstance(body.data.get("households"), list):
            raise UpstreamProtocolError(error_detail(body, "error", "errorCode"))
        return [
            household["id"]
            for household in body.data["households"]
            if isinstance(household, dict) and isinstance(household.get("id"), str)
        ]

    async def list_clip_capable_devices(self, household_ids: list[str]) -> dict[str, list[ClipCapableDevice]]:
        """Map each household to its clip-capable players.

        A household whose groups cannot be fetched or parsed is kept with an
        empty list, and malformed player entries are skipped; the others are
        unaffected. Household order and the player order of each groups
        listing are preserved.
        """
        devices_by_household: dict[str, list[ClipCapableDevice]] = {}
        for household_id in household_ids:
            devices_by_household[household_id] = []
            try:
                body = await self.control_api.get(f"/households/{household_id}/groups")
            except UpstreamTransportError as e:
                self.logger.warning("Could not fetch groups for household %s: %s", household_id, e.detail)
                continue

            if not isinstance(body, Structured) or "groups" not in body.data:
                self.logger.warning(
                    "Unexpected groups response for household %s: %s",
                    household_id,
                    error_detail(body, "error", "errorCode"),
                )
                continue

            players = body.data.get("players") or []
            if not isinstance(players, list):
                self.logger.warning("Unexpected player list for household %s: %r", household_id, players)
                continue

            for raw_player in players:
                try:
                    player = Player.model_validate(raw_player)
                except ValidationError as e:
                    self.logger.warning("Skipping malformed player in household %s: %s", household_id, e)
                    continue
                if player.accepts_audio_clips:
                    devices_by_household[household_id].append(player.to_device())
        return devices_by_household

    async def all_clip_capable_devices(self) -> dict[str, list[ClipCapableDevice]]:
        """Enumerate households, then their clip-capable players."""
        household_ids = await self.list_households()
        return await self.list_clip_capable_devices(household_ids)
