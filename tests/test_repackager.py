"""Tests for fast-start remuxing."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from media.repackager import (
    PROCESSED_SUFFIX,
    STDERR_TAIL_LENGTH,
    FFmpegRepackager,
    RepackageError,
    fast_start_output_path,
)


def _mock_process(returncode=0, stderr=b""):
    process = AsyncMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(b"", stderr))
    return process


def test_output_path_appends_suffix():
    assert fast_start_output_path(Path("/tmp/tubely-upload-abc.mp4")) == Path(
        "/tmp/tubely-upload-abc.mp4" + PROCESSED_SUFFIX
    )


class TestFFmpegRepackager:
    @pytest.mark.asyncio
    async def test_stream_copy_with_faststart(self):
        repackager = FFmpegRepackager("/usr/bin/ffmpeg")
        input_path = Path("/tmp/in.mp4")

        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_subprocess.return_value = _mock_process()
            output_path = await repackager.repackage(input_path)

        assert output_path == fast_start_output_path(input_path)
        args = list(mock_subprocess.call_args[0])
        assert args == [
            "/usr/bin/ffmpeg",
            "-i",
            "/tmp/in.mp4",
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            "mp4",
            str(output_path),
        ]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr_tail(self):
        repackager = FFmpegRepackager()
        stderr = b"banner " * 1000 + b"Invalid data found when processing input"

        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_subprocess.return_value = _mock_process(returncode=1, stderr=stderr)
            with pytest.raises(RepackageError) as exc_info:
                await repackager.repackage(Path("/tmp/in.mp4"))

        message = str(exc_info.value)
        assert "Invalid data found when processing input" in message
        assert len(message) < STDERR_TAIL_LENGTH + 100

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        repackager = FFmpegRepackager("/nonexistent/ffmpeg")

        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("no such file")):
            with pytest.raises(RepackageError, match="Could not start ffmpeg"):
                await repackager.repackage(Path("/tmp/in.mp4"))
