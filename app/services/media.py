"""Media URL helpers for item cards."""

from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

IPFS_GATEWAY = "https://ipfs.io/ipfs/"

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".m4v")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".avif", ".gif")


class MediaType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    UNKNOWN = "unknown"


def ipfs_to_http(url: Optional[str]) -> Optional[str]:
    """Rewrite ipfs:// references to the public gateway. Blank -> None."""
    if not url:
        return None
    u = str(url).strip()
    if not u:
        return None
    if u.startswith("ipfs://"):
        return IPFS_GATEWAY + u[len("ipfs://"):]
    return u


def detect_media_type(url: Optional[str], mime_type: Optional[str] = None) -> MediaType:
    """Classify by MIME type first, then by the URL path's extension."""
    mt = (mime_type or "").lower().strip()
    if mt.startswith("video/"):
        return MediaType.VIDEO
    if mt.startswith("image/"):
        return MediaType.IMAGE

    if not url:
        return MediaType.UNKNOWN

    path = urlsplit(str(url).lower()).path
    if path.endswith(VIDEO_EXTENSIONS):
        return MediaType.VIDEO
    if path.endswith(IMAGE_EXTENSIONS):
        return MediaType.IMAGE
    return MediaType.UNKNOWN
