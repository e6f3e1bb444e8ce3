"""This package lets a local controller play speech and audio clips on Sonos speakers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sonos-audioclip-tts")
except PackageNotFoundError:
    # Fallback for source checkouts without installed metadata
    __version__ = "dev"

__all__ = ["__version__"]
