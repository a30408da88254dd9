"""Tests for aspect-ratio classification and ffprobe integration."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from media.inspector import (
    ASPECT_LANDSCAPE,
    ASPECT_OTHER,
    ASPECT_PORTRAIT,
    Dimensions,
    FFprobeInspector,
    ProbeError,
    classify_aspect_ratio,
    get_video_aspect_ratio,
    parse_probe_output,
)


def _mock_process(returncode=0, stdout=b"", stderr=b""):
    process = AsyncMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    return process


def _probe_json(width, height):
    return json.dumps({"streams": [{"index": 0, "codec_type": "video", "width": width, "height": height}]}).encode()


class TestClassifyAspectRatio:
    @pytest.mark.parametrize(
        "width,height",
        [(1920, 1080), (1280, 720), (3840, 2160), (1920, 1088), (854, 480)],
    )
    def test_landscape(self, width, height):
        assert classify_aspect_ratio(width, height) == ASPECT_LANDSCAPE

    @pytest.mark.parametrize("width,height", [(1080, 1920), (720, 1280), (2160, 3840), (608, 1080)])
    def test_portrait(self, width, height):
        assert classify_aspect_ratio(width, height) == ASPECT_PORTRAIT

    @pytest.mark.parametrize("width,height", [(1000, 1000), (640, 480), (2560, 1080), (1080, 1350)])
    def test_other(self, width, height):
        assert classify_aspect_ratio(width, height) == ASPECT_OTHER

    @pytest.mark.parametrize(
        "width,height",
        [(170, 100), (180, 100), (55, 100), (57, 100)],
    )
    def test_band_edges_are_excluded(self, width, height):
        """Ratios of exactly 1.7, 1.8, 0.55 and 0.57 fall outside both bands."""
        assert classify_aspect_ratio(width, height) == ASPECT_OTHER

    def test_just_inside_band_edges(self):
        assert classify_aspect_ratio(1701, 1000) == ASPECT_LANDSCAPE
        assert classify_aspect_ratio(1799, 1000) == ASPECT_LANDSCAPE
        assert classify_aspect_ratio(551, 1000) == ASPECT_PORTRAIT
        assert classify_aspect_ratio(569, 1000) == ASPECT_PORTRAIT

    @pytest.mark.parametrize("width,height", [(0, 1080), (1920, 0), (-1, 10)])
    def test_invalid_dimensions(self, width, height):
        with pytest.raises(ValueError):
            classify_aspect_ratio(width, height)


class TestParseProbeOutput:
    def test_first_stream_dimensions(self):
        output = json.dumps(
            {
                "streams": [
                    {"codec_type": "video", "width": 1080, "height": 1920},
                    {"codec_type": "audio"},
                ]
            }
        )
        assert parse_probe_output(output) == Dimensions(1080, 1920)

    def test_invalid_json(self):
        with pytest.raises(ProbeError, match="not valid JSON"):
            parse_probe_output(b"not json")

    def test_no_streams(self):
        with pytest.raises(ProbeError, match="No streams"):
            parse_probe_output(b'{"streams": []}')

    def test_missing_streams_key(self):
        with pytest.raises(ProbeError):
            parse_probe_output(b"{}")

    def test_streams_not_a_list(self):
        with pytest.raises(ProbeError, match="No streams"):
            parse_probe_output(b'{"streams": {"width": 1920, "height": 1080}}')

    def test_zero_width(self):
        with pytest.raises(ProbeError, match="width/height"):
            parse_probe_output(_probe_json(0, 1080))

    def test_audio_first_stream_has_no_dimensions(self):
        with pytest.raises(ProbeError):
            parse_probe_output(b'{"streams": [{"codec_type": "audio"}]}')


class TestFFprobeInspector:
    @pytest.mark.asyncio
    async def test_probe_runs_ffprobe_with_json_output(self):
        inspector = FFprobeInspector("/usr/bin/ffprobe")

        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_subprocess.return_value = _mock_process(stdout=_probe_json(1920, 1080))
            dims = await inspector.probe(Path("/tmp/clip.mp4"))

        assert dims == Dimensions(1920, 1080)
        args = mock_subprocess.call_args[0]
        assert args[0] == "/usr/bin/ffprobe"
        assert "-show_streams" in args
        assert args[args.index("-print_format") + 1] == "json"
        assert args[-1] == "/tmp/clip.mp4"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        inspector = FFprobeInspector()

        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_subprocess.return_value = _mock_process(returncode=1, stderr=b"moov atom not found")
            with pytest.raises(ProbeError, match="moov atom not found"):
                await inspector.probe(Path("/tmp/broken.mp4"))

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        inspector = FFprobeInspector("/nonexistent/ffprobe")

        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("no such file")):
            with pytest.raises(ProbeError, match="Could not start ffprobe"):
                await inspector.probe(Path("/tmp/clip.mp4"))

    @pytest.mark.asyncio
    async def test_get_video_aspect_ratio(self):
        with patch("asyncio.create_subprocess_exec") as mock_subprocess:
            mock_subprocess.return_value = _mock_process(stdout=_probe_json(1080, 1920))
            aspect = await get_video_aspect_ratio(Path("/tmp/clip.mp4"), FFprobeInspector())

        assert aspect == ASPECT_PORTRAIT
