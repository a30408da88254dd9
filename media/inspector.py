"""
Aspect-ratio inspection using ffprobe.

The inspector only reads stream metadata; classification buckets a video into
one of three aspect categories used to build its storage key.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import NamedTuple, Optional, Union

logger = logging.getLogger(__name__)

ASPECT_LANDSCAPE = "16:9"
ASPECT_PORTRAIT = "9:16"
ASPECT_OTHER = "other"

# Open intervals around 16/9 and 9/16, wide enough for encoder rounding (e.g. 1920x1088)
LANDSCAPE_RATIO_RANGE = (1.7, 1.8)
PORTRAIT_RATIO_RANGE = (0.55, 0.57)


class ProbeError(Exception):
    """Raised when ffprobe fails or reports unusable stream metadata."""

    pass


class Dimensions(NamedTuple):
    width: int
    height: int


def classify_aspect_ratio(width: int, height: int) -> str:
    """Bucket width/height into "16:9", "9:16" or "other"."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid dimensions {width}x{height}")

    ratio = width / height
    if LANDSCAPE_RATIO_RANGE[0] < ratio < LANDSCAPE_RATIO_RANGE[1]:
        return ASPECT_LANDSCAPE
    if PORTRAIT_RATIO_RANGE[0] < ratio < PORTRAIT_RATIO_RANGE[1]:
        return ASPECT_PORTRAIT
    return ASPECT_OTHER


def parse_probe_output(output: Union[bytes, str]) -> Dimensions:
    """Extract the first stream's dimensions from ffprobe JSON output.

    Raises:
        ProbeError: If the output is not JSON, has no streams, or width/height is zero
    """
    try:
        data = json.loads(output)
    except (ValueError, TypeError) as e:
        raise ProbeError(f"ffprobe output is not valid JSON: {e}") from e

    streams = data.get("streams") if isinstance(data, dict) else None
    if not streams or not isinstance(streams, list):
        raise ProbeError("No streams found")

    first = streams[0]
    try:
        width = int(first.get("width") or 0)
        height = int(first.get("height") or 0)
    except (AttributeError, TypeError, ValueError) as e:
        raise ProbeError(f"Invalid stream dimensions: {e}") from e

    if width == 0 or height == 0:
        raise ProbeError(f"Invalid width/height: {width}x{height}")

    return Dimensions(width, height)


class FFprobeInspector:
    """Runs ffprobe against local files. Swap for a fake in tests."""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    async def probe(self, path: Path) -> Dimensions:
        """Get the first stream's dimensions using ffprobe.

        Args:
            path: Local video file

        Returns:
            Dimensions of streams[0]

        Raises:
            ProbeError: If ffprobe cannot be started, exits non-zero, or output is unusable
        """
        cmd = [self.ffprobe_path, "-v", "error", "-print_format", "json", "-show_streams", str(path)]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ProbeError(f"Could not start ffprobe: {e}") from e

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise ProbeError(
                f"ffprobe exited with code {process.returncode}: {stderr.decode('utf-8', errors='ignore')}"
            )

        return parse_probe_output(stdout)


async def get_video_aspect_ratio(path: Path, inspector: Optional[FFprobeInspector] = None) -> str:
    """Probe a file and return its aspect category."""
    inspector = inspector or FFprobeInspector()
    dims = await inspector.probe(path)
    aspect = classify_aspect_ratio(dims.width, dims.height)
    logger.debug(f"Probed {path.name}: {dims.width}x{dims.height} -> {aspect}")
    return aspect
