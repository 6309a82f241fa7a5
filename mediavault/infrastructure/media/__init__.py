"""
Media inspection infrastructure.

Extracts width, height, duration and codec from uploaded bytes with FFprobe.
"""

from .probe import FFprobeMediaProbe, create_media_probe, parse_ffprobe_output

__all__ = [
    "FFprobeMediaProbe",
    "create_media_probe",
    "parse_ffprobe_output",
]
