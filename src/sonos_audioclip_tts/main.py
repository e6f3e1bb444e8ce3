"""Main entry point for the audio clip bridge.

This module provides the CLI interface and initialization logic for the bridge.
Handles configuration loading, logging, credential store and OAuth setup, and
server startup.
"""

import logging
import pathlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import httpx
import jinja2
import typer
import uvicorn
from fastapi import FastAPI

from sonos_audioclip_tts import api, config
from sonos_audioclip_tts.clip_dispatcher import ClipDispatcher
from sonos_audioclip_tts.control_api import ControlApiClient
from sonos_audioclip_tts.credential_store import create_credential_store
from sonos_audioclip_tts.device_directory import DeviceDirectory
from sonos_audioclip_tts.token_manager import TokenManager
from sonos_audioclip_tts.tts import SpeechSynthesizer

LOGGER_NAME = "sonos_audioclip_tts"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer()


def setup_logging(level: str) -> logging.Logger:
    """Configure root logging once and return the bridge logger."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    return logging.getLogger(LOGGER_NAME)


def build_app(config_obj: config.BridgeConfig, logger: logging.Logger) -> FastAPI:
    """Wire all collaborators and return the FastAPI application.

    Args:
        config_obj: Loaded bridge configuration.
        logger: Logger shared by all components.
    """
    # AIDEV-NOTE: One client for every outbound call; its timeout bounds each request
    http_client = httpx.AsyncClient(timeout=config_obj.request_timeout)
    store = create_credential_store(config_obj)

    token_manager = TokenManager(
        settings=config_obj.sonos,
        redirect_uri=config_obj.redirect_uri,
        store=store,
        http_client=http_client,
        logger=logger,
    )
    control_api = ControlApiClient(
        http_client=http_client,
        token_manager=token_manager,
        base_url=config_obj.sonos.control_api_url,
        logger=logger,
    )
    dependencies = api.BridgeDependencies(
        config_obj=config_obj,
        token_manager=token_manager,
        device_directory=DeviceDirectory(control_api, logger),
        clip_dispatcher=ClipDispatcher(control_api, logger),
        synthesizer=SpeechSynthesizer(
            output_dir=config_obj.tts_dir,
            base_url=config_obj.base_url,
            language=config_obj.tts_language,
            timeout=config_obj.request_timeout,
            logger=logger,
        ),
        template_env=jinja2.Environment(loader=jinja2.PackageLoader("sonos_audioclip_tts", "templates")),
        logger=logger,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        # Load the stored token (refreshing it if needed) before the first request
        await token_manager.ensure_token()
        if token_manager.auth_required:
            logger.warning("No valid authorization, visit %s/auth to authorize", config_obj.base_url)
        try:
            yield
        finally:
            await http_client.aclose()
            store.close()

    return api.create_app(dependencies, lifespan=lifespan)


@app.command()
def main(config_path: Annotated[pathlib.Path, typer.Argument(envvar="SONOS_BRIDGE_CONFIG_PATH")]) -> None:
    """Start the bridge server with the given configuration.

    Args:
        config_path: Path to YAML/JSON configuration file or from SONOS_BRIDGE_CONFIG_PATH env var.
    """
    config_obj = config.load_config(config_path)
    logger = setup_logging(config_obj.log_level)
    logger.info("Starting bridge on %s", config_obj.base_url)

    uvicorn.run(
        build_app(config_obj, logger),
        host=config_obj.bind_host,
        port=config_obj.port,
        ssl_certfile=str(config_obj.ssl_certfile) if config_obj.ssl_certfile else None,
        ssl_keyfile=str(config_obj.ssl_keyfile) if config_obj.ssl_keyfile else None,
    )


if __name__ == "__main__":
    app()
