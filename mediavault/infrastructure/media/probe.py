"""
Media inspection using FFprobe.

Before an upload is stored, the probe reads width, height, duration and
codec from the bytes. The service attaches these as provider user metadata,
so every adapter can report them back in its StorageMetadata.

FFprobe works best with file paths, so the bytes are written to a temporary
file, probed, and the file removed. Images come back as a single video
stream with no duration.
"""

import asyncio
import json
import logging
import mimetypes
import os
import shutil
import subprocess
import tempfile
from typing import Any, Optional

from mediavault.config import Settings
from mediavault.core.storage.service import MediaInfo, MediaProbe

logger = logging.getLogger(__name__)


def parse_ffprobe_output(payload: dict[str, Any]) -> MediaInfo:
    """Build MediaInfo from ``ffprobe -print_format json`` output."""
    video_stream = None
    for stream in payload.get("streams", []):
        if stream.get("codec_type") == "video":
            video_stream = stream
            break

    if not video_stream:
        raise RuntimeError("No video stream found")

    # get duration from format or stream
    duration = _to_float(payload.get("format", {}).get("duration"))
    if not duration:
        duration = _to_float(video_stream.get("duration"))

    return MediaInfo(
        width=int(video_stream["width"]) if video_stream.get("width") else None,
        height=int(video_stream["height"]) if video_stream.get("height") else None,
        duration=duration or None,
        encoding=video_stream.get("codec_name"),
    )


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FFprobeMediaProbe:
    """
    MediaProbe backed by the ffprobe binary.

    Args:
        ffprobe_path: path to ffprobe (default assumes it's in PATH)
        timeout_seconds: upper bound on one ffprobe run
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_seconds: float = 30.0) -> None:
        self._ffprobe = ffprobe_path
        self._timeout = timeout_seconds
        logger.info("FFprobe media probe initialized", extra={"ffprobe": ffprobe_path})

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def probe(self, data: bytes, content_type: str) -> MediaInfo:
        suffix = mimetypes.guess_extension(content_type or "") or ""
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(data)
            tmp_path = tmp.name

        try:
            cmd = [
                self._ffprobe,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                tmp_path,
            ]

            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )

            if result.returncode != 0:
                raise RuntimeError(f"FFprobe failed: {result.stderr}")

            info = parse_ffprobe_output(json.loads(result.stdout))
            logger.debug(
                "Probed media",
                extra={
                    "content_type": content_type,
                    "width": info.width,
                    "height": info.height,
                    "duration": info.duration,
                },
            )
            return info

        finally:
            os.unlink(tmp_path)


def create_media_probe(settings: Settings) -> Optional[MediaProbe]:
    """
    Factory function for the upload media probe.

    Returns None when probing is disabled or ffprobe is not installed;
    uploads then proceed without dimensions.
    """
    if not settings.media_probe_enabled:
        return None

    if shutil.which(settings.ffprobe_path) is None:
        logger.warning(
            "ffprobe not found; media probing disabled",
            extra={"ffprobe": settings.ffprobe_path},
        )
        return None

    return FFprobeMediaProbe(
        ffprobe_path=settings.ffprobe_path,
        timeout_seconds=settings.media_probe_timeout_seconds,
    )
