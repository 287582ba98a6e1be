from __future__ import annotations

import base64
import binascii
from pathlib import Path

DATA_URL_MARKER = ";base64,"


class LocalFrameLoader:
    """Resolves frame references to base64 image data.

    Accepts a data URL, raw base64 text, or a path to a local image file.
    When ``frames_dir`` is given, paths are resolved against it and anything
    that escapes it is not read.
    """

    def __init__(self, frames_dir: str | None = None) -> None:
        self._frames_dir = Path(frames_dir).resolve() if frames_dir else None

    def load(self, frame_ref: str) -> str:
        if not frame_ref:
            raise ValueError("frame_ref must not be empty")

        if frame_ref.startswith("data:"):
            _, marker, data = frame_ref.partition(DATA_URL_MARKER)
            if not marker or not data:
                raise ValueError("frame data URL is not base64 encoded")
            return data

        path = self._resolve_path(frame_ref)
        if path is not None:
            return base64.b64encode(path.read_bytes()).decode("ascii")

        if _looks_like_base64(frame_ref):
            return frame_ref
        raise FileNotFoundError(f"Frame not found: {frame_ref}")

    def _resolve_path(self, frame_ref: str) -> Path | None:
        path = Path(frame_ref)
        try:
            if self._frames_dir is not None:
                path = (self._frames_dir / path).resolve()
                if not path.is_relative_to(self._frames_dir):
                    return None
            return path if path.is_file() else None
        except OSError:
            # name too long for the filesystem, treat as inline data
            return None


def _looks_like_base64(value: str) -> bool:
    if len(value) % 4 != 0:
        return False
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True
