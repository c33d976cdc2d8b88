"""Artifact downloading with atomic writes and classified failures."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from filetype import guess

from .config import DEFAULT_USER_AGENT
from .errors import (
    FilesystemError,
    MalformedReferenceError,
    NetworkError,
    UnsupportedContentError,
    status_error,
)
from .models import ArtifactReference
from .utils import last_path_segment

logger = logging.getLogger("gallery_walker")

CHUNK_SIZE = 256 * 1024
ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff", "avif", "heic"}


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def destination_for(ref: ArtifactReference, directory: Path) -> Path:
    """Name the local file after the last path segment of ``ref``."""
    name = last_path_segment(ref)
    if not name:
        raise MalformedReferenceError(f"Cannot derive a file name from {ref!r}", ref)
    return Path(directory) / name


class ArtifactStore:
    """Stream artifacts to disk so that a destination is complete or absent.

    Each call to :meth:`download` makes a single attempt. Retrying is the
    caller's decision, guided by the error class raised.
    """

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        referer: Optional[str] = None,
        validate_images: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.validate_images = validate_images
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent
        if referer:
            self.session.headers["Referer"] = referer

    def __enter__(self) -> "ArtifactStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def download(self, ref: ArtifactReference, destination: Path) -> Path:
        """Fetch ``ref`` into ``destination`` and return the written path."""
        parsed = urlparse(ref)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise MalformedReferenceError(f"Not an http(s) URL: {ref!r}", ref)

        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot create {destination.parent}: {exc}", ref) from exc

        try:
            with self.session.get(ref, timeout=self.timeout, stream=True) as resp:
                if resp.status_code >= 400:
                    raise status_error(resp.status_code, ref)
                written = self._write_atomically(ref, resp, destination)
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch {ref}: {exc}", ref) from exc

        logger.info("Saved %s (%d bytes)", destination, written)
        return destination

    def _write_atomically(self, ref: str, resp: requests.Response, destination: Path) -> int:
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{destination.name}.", suffix=".part", dir=destination.parent
            )
        except OSError as exc:
            raise FilesystemError(f"Cannot write to {destination.parent}: {exc}", ref) from exc

        tmp_path = Path(tmp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    if written == 0 and self.validate_images:
                        self._check_image(ref, chunk)
                    handle.write(chunk)
                    written += len(chunk)
            if written == 0:
                raise UnsupportedContentError(f"Empty response body for {ref}", ref)
            os.replace(tmp_path, destination)
        except requests.RequestException:
            # RequestException is an OSError; it belongs to the network side.
            tmp_path.unlink(missing_ok=True)
            raise
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise FilesystemError(f"Failed to write {destination}: {exc}", ref) from exc
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return written

    @staticmethod
    def _check_image(ref: str, head: bytes) -> None:
        ext = detect_image_format(head)
        if not ext or ext not in ALLOWED_IMAGE_TYPES:
            raise UnsupportedContentError(f"{ref} does not look like an image", ref)
