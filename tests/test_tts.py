"""Tests for the gTTS-backed speech synthesizer."""

import asyncio
import pathlib
import tempfile
import time
import unittest
from typing import BinaryIO
from unittest.mock import Mock, patch

from gtts import gTTSError

from sonos_audioclip_tts.errors import SpeechSynthesisError
from sonos_audioclip_tts.tts import SpeechSynthesizer


def fake_gtts(text: str, lang: str, timeout: float, delay: float = 0.0) -> Mock:
    def write_to_fp(fp: BinaryIO) -> None:
        time.sleep(delay)
        fp.write(b"ID3" + text.encode())

    engine = Mock()
    engine.write_to_fp.side_effect = write_to_fp
    return engine


def slow_fake_gtts(text: str, lang: str, timeout: float) -> Mock:
    return fake_gtts(text, lang, timeout, delay=0.05)


class TestSpeechSynthesizer(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.output_dir = pathlib.Path(temp_dir.name)
        self.synthesizer = SpeechSynthesizer(self.output_dir, "http://hassio.local:8349/", "en", 7.5, Mock())

    async def test_synthesize_writes_mp3_and_returns_url(self) -> None:
        with patch("sonos_audioclip_tts.tts.gTTS", side_effect=fake_gtts) as mock_gtts:
            url = await self.synthesizer.synthesize("hello")

        key = self.synthesizer.clip_key("hello")
        self.assertEqual(url, f"http://hassio.local:8349/tts/{key}.mp3")
        self.assertEqual((self.output_dir / f"{key}.mp3").read_bytes(), b"ID3hello")
        self.assertEqual([path.name for path in self.output_dir.iterdir()], [f"{key}.mp3"])
        mock_gtts.assert_called_once_with(text="hello", lang="en", timeout=7.5)

    async def test_same_text_is_rendered_once(self) -> None:
        with patch("sonos_audioclip_tts.tts.gTTS", side_effect=fake_gtts) as mock_gtts:
            first = await self.synthesizer.synthesize("dinner is ready")
            second = await self.synthesizer.synthesize("dinner is ready")

        self.assertEqual(first, second)
        mock_gtts.assert_called_once()

    async def test_concurrent_requests_for_same_text_share_one_render(self) -> None:
        with patch("sonos_audioclip_tts.tts.gTTS", side_effect=slow_fake_gtts) as mock_gtts:
            urls = await asyncio.gather(*(self.synthesizer.synthesize("doorbell") for _ in range(3)))

        key = self.synthesizer.clip_key("doorbell")
        self.assertEqual(set(urls), {f"http://hassio.local:8349/tts/{key}.mp3"})
        mock_gtts.assert_called_once()
        self.assertEqual([path.name for path in self.output_dir.iterdir()], [f"{key}.mp3"])

    async def test_concurrent_requests_for_different_texts(self) -> None:
        with patch("sonos_audioclip_tts.tts.gTTS", side_effect=slow_fake_gtts) as mock_gtts:
            await asyncio.gather(self.synthesizer.synthesize("front door"), self.synthesizer.synthesize("back door"))

        self.assertEqual(mock_gtts.call_count, 2)
        self.assertEqual(len(list(self.output_dir.glob("*.mp3"))), 2)

    async def test_language_is_part_of_the_key(self) -> None:
        german = SpeechSynthesizer(self.output_dir, "http://hassio.local:8349", "de", 7.5, Mock())

        self.assertNotEqual(german.clip_key("hallo"), self.synthesizer.clip_key("hallo"))

    async def test_provider_failure_raises_and_leaves_no_file(self) -> None:
        engine = Mock()
        engine.write_to_fp.side_effect = gTTSError("429 (Too Many Requests)")

        with (
            patch("sonos_audioclip_tts.tts.gTTS", return_value=engine),
            self.assertRaises(SpeechSynthesisError),
        ):
            await self.synthesizer.synthesize("hello")

        self.assertEqual(list(self.output_dir.iterdir()), [])

    async def test_failed_render_can_be_retried(self) -> None:
        engine = Mock()
        engine.write_to_fp.side_effect = gTTSError("Connection timed out")

        with patch("sonos_audioclip_tts.tts.gTTS", return_value=engine), self.assertRaises(SpeechSynthesisError):
            await self.synthesizer.synthesize("hello")
        with patch("sonos_audioclip_tts.tts.gTTS", side_effect=fake_gtts):
            url = await self.synthesizer.synthesize("hello")

        self.assertTrue(url.endswith(f"{self.synthesizer.clip_key('hello')}.mp3"))
