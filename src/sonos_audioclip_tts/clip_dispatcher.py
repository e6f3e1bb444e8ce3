"""Sending audio clips to one or many players."""

import asyncio
import logging
from collections.abc import Iterable

from sonos_audioclip_tts.control_api import ControlApiClient
from sonos_audioclip_tts.errors import BridgeError
from sonos_audioclip_tts.models import ClipCapableDevice, ClipRequest, DeviceOutcome, DispatchResult
from sonos_audioclip_tts.upstream import Structured, error_detail


class ClipDispatcher:
    """Posts clip requests to the per-player audioClip endpoint.

    Attributes:
        control_api: Authenticated Control API client.
        logger: Logger for dispatch results.
    """

    def __init__(self, control_api: ControlApiClient, logger: logging.Logger) -> None:
        self.control_api = control_api
        self.logger = logger

    async def send_to_device(self, device_id: str, clip_request: ClipRequest) -> DeviceOutcome:
        """Send one clip to one player.

        The clip was accepted when the response carries an ``id``. Every other
        outcome, including transport and authorization errors, is returned as
        a failure; nothing is retried.
        """
        try:
            body = await self.control_api.post(f"/players/{device_id}/audioClip", clip_request.to_body())
        except BridgeError as e:
            self.logger.warning("Audio clip to %s failed: %s: %s", device_id, type(e).__name__, e.detail)
            return DeviceOutcome(device_id=device_id, success=False, error=e.detail)

        if isinstance(body, Structured) and body.data.get("id") is not None:
            self.logger.info("Audio clip %s accepted by %s", body.data["id"], device_id)
            return DeviceOutcome(device_id=device_id, success=True)

        detail = error_detail(body, "errorCode", "error")
        self.logger.warning("Audio clip to %s rejected: %s", device_id, detail)
        return DeviceOutcome(device_id=device_id, success=False, error=detail)

    async def send(self, device_id: str, clip_request: ClipRequest) -> DispatchResult:
        return DispatchResult.from_outcomes([await self.send_to_device(device_id, clip_request)])

    async def send_to_all(
        self,
        clip_request: ClipRequest,
        devices_by_household: dict[str, list[ClipCapableDevice]],
        excluded: str | Iterable[str] | None = None,
    ) -> DispatchResult:
        """Send one clip concurrently to every device not excluded by name.

        Args:
            clip_request: Clip to play.
            devices_by_household: Output of DeviceDirectory.list_clip_capable_devices.
            excluded: Display name or names to skip; matching is exact and case-sensitive.

        Returns:
            Success only if every device accepted the clip, otherwise the
            combined error detail of the failing devices.
        """
        if excluded is None:
            excluded_names: set[str] = set()
        elif isinstance(excluded, str):
            excluded_names = {excluded}
        else:
            excluded_names = set(excluded)

        targets = [
            device
            for devices in devices_by_household.values()
            for device in devices
            if device.name not in excluded_names
        ]
        self.logger.debug("Sending audio clip to %d devices, excluding %s", len(targets), sorted(excluded_names))

        # AIDEV-NOTE: send_to_device never raises, so one failing player cannot cancel the group
        async with asyncio.TaskGroup() as task_group:
            tasks = [task_group.create_task(self.send_to_device(device.id, clip_request)) for device in targets]

        return DispatchResult.from_outcomes([task.result() for task in tasks])
