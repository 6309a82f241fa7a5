"""
Tests for ffprobe output parsing and probe construction.
"""

import sys

import pytest

from mediavault.config import Settings
from mediavault.infrastructure.media import (
    FFprobeMediaProbe,
    create_media_probe,
    parse_ffprobe_output,
)


def test_video_dimensions_and_duration():
    info = parse_ffprobe_output({
        "streams": [
            {"codec_type": "audio", "codec_name": "aac"},
            {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
        ],
        "format": {"duration": "42.5"},
    })
    assert (info.width, info.height, info.duration, info.encoding) == (1280, 720, 42.5, "h264")


def test_duration_falls_back_to_stream():
    info = parse_ffprobe_output({
        "streams": [{"codec_type": "video", "width": 10, "height": 10, "duration": "3.0"}],
        "format": {},
    })
    assert info.duration == 3.0


def test_still_image_has_no_duration():
    info = parse_ffprobe_output({
        "streams": [{"codec_type": "video", "codec_name": "png", "width": 64, "height": 32}],
        "format": {"duration": "N/A"},
    })
    assert info.duration is None
    assert info.as_object_metadata() == {"width": "64", "height": "32", "encoding": "png"}


def test_no_video_stream_is_an_error():
    with pytest.raises(RuntimeError, match="No video stream"):
        parse_ffprobe_output({"streams": [{"codec_type": "audio"}]})


def test_disabled_probe_is_none():
    settings = Settings(_env_file=None, media_probe_enabled=False)
    assert create_media_probe(settings) is None


def test_missing_binary_disables_probe():
    settings = Settings(_env_file=None, ffprobe_path="/nonexistent/ffprobe-binary")
    assert create_media_probe(settings) is None


def test_probe_has_its_own_timeout():
    settings = Settings(
        _env_file=None,
        ffprobe_path=sys.executable,
        media_probe_timeout_seconds=5.0,
        provider_timeout_seconds=60.0,
    )
    probe = create_media_probe(settings)
    assert isinstance(probe, FFprobeMediaProbe)
    assert probe.timeout_seconds == 5.0
