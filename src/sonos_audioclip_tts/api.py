"""HTTP surface of the audio clip bridge.

All API routes answer with JSON carrying a boolean ``success``. Failures carry an
``error`` field, or ``authRequired: true`` when the user has to visit /auth.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Annotated, Any
from urllib.parse import urlsplit

import jinja2
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from sonos_audioclip_tts import __version__
from sonos_audioclip_tts.clip_dispatcher import ClipDispatcher
from sonos_audioclip_tts.config import BridgeConfig
from sonos_audioclip_tts.device_directory import DeviceDirectory
from sonos_audioclip_tts.errors import AuthorizationExchangeFailed, BridgeError, MissingParameterError
from sonos_audioclip_tts.models import ClipRequest
from sonos_audioclip_tts.token_manager import TokenManager
from sonos_audioclip_tts.tts import TTS_PATH_PREFIX, SpeechSynthesizer

MP3_PATH_PREFIX = "/mp3"
AUTH_REQUIRED_RESPONSE = {"success": False, "authRequired": True}


@dataclass
class BridgeDependencies:
    """Container for the collaborators every route handler needs.

    Attributes:
        config_obj: Loaded bridge configuration.
        token_manager: Owner of the OAuth credential.
        device_directory: Household and player discovery.
        clip_dispatcher: Audio clip fan-out.
        synthesizer: Text-to-speech provider.
        template_env: Jinja2 environment for text responses.
        logger: Logger for request handling.
    """

    config_obj: BridgeConfig
    token_manager: TokenManager
    device_directory: DeviceDirectory
    clip_dispatcher: ClipDispatcher
    synthesizer: SpeechSynthesizer
    template_env: jinja2.Environment
    logger: logging.Logger


def resolve_stream_url(stream_url: str | None, base_url: str) -> str | None:
    """Point relative stream URLs at the local audio directory.

    Absolute URLs are returned unchanged; anything else is treated as a file
    name below /mp3 on this service.
    """
    if not stream_url:
        return None
    parts = urlsplit(stream_url)
    if parts.scheme and parts.netloc:
        return stream_url
    return f"{base_url.rstrip('/')}{MP3_PATH_PREFIX}/{stream_url.lstrip('/')}"


def _require(**parameters: str | None) -> tuple[str, ...]:
    """Return the required query values in order, failing if any is missing or empty."""
    values = tuple(value for value in parameters.values() if value)
    if len(values) != len(parameters):
        raise MissingParameterError("Missing Parameters")
    return values


def _load_templates(template_env: jinja2.Environment, logger: logging.Logger) -> dict[str, jinja2.Template]:
    """Load all response templates up front.

    Raises:
        RuntimeError: If a template cannot be loaded.
    """
    template_names = {"auth_complete": "auth_complete.j2"}
    templates: dict[str, jinja2.Template] = {}
    failed_templates = []
    for key, template_name in template_names.items():
        try:
            templates[key] = template_env.get_template(template_name)
        except jinja2.TemplateNotFound as e:
            logger.error("Failed to load template %s: %s", template_name, e)
            failed_templates.append(template_name)
    if failed_templates:
        raise RuntimeError(f"Critical templates failed to load: {', '.join(failed_templates)}")
    return templates


def create_app(
    dependencies: BridgeDependencies,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    """Build the FastAPI application with all routes and static mounts.

    Args:
        dependencies: Collaborators shared by all handlers.
        lifespan: Optional startup/shutdown context for the server process.

    Returns:
        Configured application.
    """
    config_obj = dependencies.config_obj
    token_manager = dependencies.token_manager
    logger = dependencies.logger
    templates = _load_templates(dependencies.template_env, logger)

    app = FastAPI(title="Sonos Audio Clip TTS", version=__version__, lifespan=lifespan)

    for prefix, directory in ((MP3_PATH_PREFIX, config_obj.audio_dir), (TTS_PATH_PREFIX, config_obj.tts_dir)):
        directory.mkdir(parents=True, exist_ok=True)
        app.mount(prefix, StaticFiles(directory=directory), name=prefix.strip("/"))

    @app.exception_handler(BridgeError)
    async def _bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        logger.warning("%s failed: %s: %s", request.url.path, type(exc).__name__, exc.detail)
        return JSONResponse({"success": False, "error": exc.detail})

    async def _authorized() -> bool:
        await token_manager.ensure_token()
        return not token_manager.auth_required

    def _clip(stream_url: str | None, volume: str | None, prio: str | None) -> ClipRequest:
        clip_request = ClipRequest.build(
            name=config_obj.clip_name,
            app_id=config_obj.app_id,
            stream_url=stream_url,
            volume=volume,
            priority=prio,
        )
        logger.debug("Clip request body: %s", clip_request.to_body())
        return clip_request

    @app.get("/auth")
    async def auth() -> RedirectResponse:
        return RedirectResponse(token_manager.authorize_url(), status_code=302)

    @app.get("/redirect")
    async def redirect(code: str | None = None) -> Response:
        (authorization_code,) = _require(code=code)
        try:
            await token_manager.complete_authorization(authorization_code)
        except AuthorizationExchangeFailed as e:
            logger.error("Access Token Error: %s", e.detail)
            return JSONResponse("Authentication failed", status_code=500)
        return PlainTextResponse(templates["auth_complete"].render(base_url=config_obj.base_url))

    @app.get("/api/allClipCapableDevices")
    async def all_clip_capable_devices() -> dict[str, Any]:
        if not await _authorized():
            return AUTH_REQUIRED_RESPONSE
        devices_by_household = await dependencies.device_directory.all_clip_capable_devices()
        return {
            "success": True,
            "households": {
                household_id: [device.model_dump() for device in devices]
                for household_id, devices in devices_by_household.items()
            },
        }

    @app.get("/api/speakText")
    async def speak_text(
        text: str | None = None,
        volume: str | None = None,
        player_id: Annotated[str | None, Query(alias="playerId")] = None,
        prio: str | None = None,
    ) -> dict[str, Any]:
        spoken_text, device_id = _require(text=text, playerId=player_id)
        if not await _authorized():
            return AUTH_REQUIRED_RESPONSE
        speech_url = await dependencies.synthesizer.synthesize(spoken_text)
        result = await dependencies.clip_dispatcher.send(device_id, _clip(speech_url, volume, prio))
        return result.to_response()

    @app.get("/api/playClip")
    async def play_clip(
        stream_url: Annotated[str | None, Query(alias="streamUrl")] = None,
        volume: str | None = None,
        player_id: Annotated[str | None, Query(alias="playerId")] = None,
        prio: str | None = None,
    ) -> dict[str, Any]:
        (device_id,) = _require(playerId=player_id)
        if not await _authorized():
            return AUTH_REQUIRED_RESPONSE
        clip_request = _clip(resolve_stream_url(stream_url, config_obj.base_url), volume, prio)
        result = await dependencies.clip_dispatcher.send(device_id, clip_request)
        return result.to_response()

    @app.get("/api/playClipAll")
    async def play_clip_all(
        stream_url: Annotated[str | None, Query(alias="streamUrl")] = None,
        volume: str | None = None,
        prio: str | None = None,
        exclude: Annotated[list[str] | None, Query()] = None,
    ) -> dict[str, Any]:
        if not await _authorized():
            return AUTH_REQUIRED_RESPONSE
        devices_by_household = await dependencies.device_directory.all_clip_capable_devices()
        clip_request = _clip(resolve_stream_url(stream_url, config_obj.base_url), volume, prio)
        result = await dependencies.clip_dispatcher.send_to_all(clip_request, devices_by_household, exclude)
        return result.to_response()

    return app
