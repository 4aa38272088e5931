from __future__ import annotations

import logging
import socket
from typing import Dict, Mapping, Tuple

from .alerts import MEDIA_ALERT, MEDIA_EARLY_WARNING, MEDIA_FLASH_SHELTER, MEDIA_TEST

log = logging.getLogger("redalert")

# media key -> (audio route, video route)
DEFAULT_ROUTES: Dict[str, Tuple[str, str]] = {
    MEDIA_ALERT: ("/alert-sound", "/alert-video"),
    MEDIA_TEST: ("/test-sound", "/test-video"),
    MEDIA_EARLY_WARNING: ("/early-warning-sound", "/early-warning-video"),
    MEDIA_FLASH_SHELTER: ("/flash-shelter-sound", "/flash-shelter-video"),
}

AUDIO_CONTENT_TYPE = "audio/mp3"
VIDEO_CONTENT_TYPE = "video/mp4"


class UnknownMediaError(KeyError):
    pass


def local_ip_address() -> str:
    """Best-effort LAN IPv4 of this host (the address cast devices can reach)."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() on UDP only selects the outbound interface.
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


class MediaResolver:
    """Maps a media key to a URL on the external static media server."""

    def __init__(self, base_url: str, routes: Mapping[str, Tuple[str, str]] | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.routes = dict(DEFAULT_ROUTES if routes is None else routes)

    @classmethod
    def for_host(cls, port: int, base_url: str = "") -> "MediaResolver":
        url = (base_url or "").strip() or f"http://{local_ip_address()}:{int(port)}"
        log.info("Media base URL: %s", url)
        return cls(url)

    def resolve(self, key: str, video: bool = False) -> str:
        try:
            audio, vid = self.routes[key]
        except KeyError:
            raise UnknownMediaError(key) from None
        return f"{self.base_url}{vid if video else audio}"

    @staticmethod
    def content_type(video: bool) -> str:
        return VIDEO_CONTENT_TYPE if video else AUDIO_CONTENT_TYPE
