"""Fast-start remuxing with ffmpeg (stream copy, no re-encode)."""

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

PROCESSED_SUFFIX = ".processing"

# ffmpeg prints its banner first; the tail of stderr holds the actual error
STDERR_TAIL_LENGTH = 1000


class RepackageError(Exception):
    """Raised when ffmpeg fails to remux a file."""

    pass


def fast_start_output_path(input_path: Path) -> Path:
    return input_path.with_name(input_path.name + PROCESSED_SUFFIX)


class FFmpegRepackager:
    """
    Moves the moov atom to the front of an MP4 so playback can start early.

    The caller owns both the input and the returned output file.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    async def repackage(self, input_path: Path) -> Path:
        output_path = fast_start_output_path(input_path)
        cmd = [
            self.ffmpeg_path,
            "-i",
            str(input_path),
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            "mp4",
            str(output_path),
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise RepackageError(f"Could not start ffmpeg: {e}") from e

        _, stderr = await process.communicate()

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="ignore")[-STDERR_TAIL_LENGTH:]
            raise RepackageError(f"ffmpeg exited with code {process.returncode}: {error_msg}")

        logger.debug(f"Remuxed {input_path.name} for fast start -> {output_path.name}")
        return output_path
