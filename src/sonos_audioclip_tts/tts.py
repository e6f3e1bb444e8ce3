"""Text-to-speech provider that turns text into a stream URL players can fetch.

Sonos players pull audio over HTTP, so speech is rendered to an mp3 file in the
TTS directory and served by this bridge under ``/tts``.
"""

import asyncio
import hashlib
import logging
import pathlib
import tempfile

from gtts import gTTS, gTTSError

from sonos_audioclip_tts.errors import SpeechSynthesisError

TTS_PATH_PREFIX = "/tts"


class SpeechSynthesizer:
    """Renders speech with Google Translate TTS and caches it by content.

    Attributes:
        output_dir: Directory served under /tts.
        base_url: Externally reachable base URL of this service.
        language: Language code for gTTS.
        timeout: Timeout in seconds for each request to the TTS service.
        logger: Logger for synthesis events.
    """

    def __init__(
        self,
        output_dir: pathlib.Path,
        base_url: str,
        language: str,
        timeout: float,
        logger: logging.Logger,
    ) -> None:
        self.output_dir = output_dir
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout
        self.logger = logger
        # AIDEV-NOTE: One lock per cache key so concurrent requests for the same text render it once
        self._locks: dict[str, asyncio.Lock] = {}

    def clip_key(self, text: str) -> str:
        return hashlib.sha1(f"{self.language}:{text}".encode()).hexdigest()

    async def synthesize(self, text: str) -> str:
        """Return a stream URL for the spoken text, rendering it if needed.

        Raises:
            SpeechSynthesisError: If the TTS service or the file write fails.
        """
        key = self.clip_key(text)
        path = self.output_dir / f"{key}.mp3"
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                if not path.exists():
                    await asyncio.to_thread(self._render, text, path)
                    self.logger.info("Synthesized %d characters to %s", len(text), path.name)
        finally:
            if not lock.locked() and self._locks.get(key) is lock:
                self._locks.pop(key, None)
        return f"{self.base_url}{TTS_PATH_PREFIX}/{key}.mp3"

    def _render(self, text: str, path: pathlib.Path) -> None:
        partial_path: pathlib.Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=f"{path.stem}.", suffix=".part", delete=False
            ) as partial:
                partial_path = pathlib.Path(partial.name)
                gTTS(text=text, lang=self.language, timeout=self.timeout).write_to_fp(partial)
            partial_path.replace(path)
        except (gTTSError, ValueError, OSError) as e:
            if partial_path is not None:
                partial_path.unlink(missing_ok=True)
            raise SpeechSynthesisError(f"Speech synthesis failed: {e}") from e
