import asyncio
import logging
import pathlib
import sys

import httpx

from sonos_audioclip_tts.config import load_config
from sonos_audioclip_tts.credential_store import create_credential_store
from sonos_audioclip_tts.token_manager import TokenManager


async def create_token(config_path: pathlib.Path) -> None:
    config_obj = load_config(config_path)
    logging.basicConfig(level=logging.INFO)
    store = create_credential_store(config_obj)
    async with httpx.AsyncClient(timeout=config_obj.request_timeout) as http_client:
        token_manager = TokenManager(
            settings=config_obj.sonos,
            redirect_uri=config_obj.redirect_uri,
            store=store,
            http_client=http_client,
            logger=logging.getLogger("create_token"),
        )
        print(f"Open this URL and authorize access:\n{token_manager.authorize_url()}")
        code = input("Paste the 'code' query parameter from the redirect URL: ").strip()
        await token_manager.complete_authorization(code)
    store.close()
    print("Token stored.")


asyncio.run(create_token(pathlib.Path(sys.argv[1] if len(sys.argv) > 1 else "config.yaml")))
