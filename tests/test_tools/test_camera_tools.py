import os
import stat
import sys
from pathlib import Path

import pytest

from camwatch.config import CameraConfig, ProbeToolConfig
from camwatch.exceptions import ToolArgumentError
from camwatch.tools import build_default_registry
from camwatch.tools.cameras import (
    ListCamerasTool,
    Target,
    parse_camera_listing,
    render_camera_listing,
)
from camwatch.tools.probe import CheckCameraParams, CheckCameraTool, run_process

CAMERAS = [
    CameraConfig(name="Entrance", url="rtsp://172.21.132.230/url1"),
    CameraConfig(name="Plaza", url="rtsp://172.21.132.230/url3"),
]

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="probe tests use POSIX shell scripts")


def _fake_ffprobe(tmp_path: Path, body: str) -> str:
    script = tmp_path / "ffprobe"
    script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


def test_listing_round_trips_through_parser():
    listing = render_camera_listing(CAMERAS)

    assert listing.startswith("All cameras retrieved successfully:")
    assert parse_camera_listing(listing) == [
        Target(name="Entrance", address="rtsp://172.21.132.230/url1"),
        Target(name="Plaza", address="rtsp://172.21.132.230/url3"),
    ]


def test_parser_ignores_unrelated_text():
    text = 'Some preamble\nCamera name: "Dock"\n  RTSP address: "rtsp://h/dock"\nCamera name: "Half"\n'

    assert parse_camera_listing(text) == [Target(name="Dock", address="rtsp://h/dock")]
    assert parse_camera_listing("") == []


@pytest.mark.asyncio
async def test_list_tool_returns_configured_cameras():
    tool = ListCamerasTool(cameras=CAMERAS, timeout_seconds=3.0)

    result = await tool.execute(tool.parse_params({}))

    assert result.success is True
    assert len(parse_camera_listing(result.content)) == 2


def test_list_tool_only_supports_all_range():
    tool = ListCamerasTool(cameras=CAMERAS, timeout_seconds=3.0)

    assert tool.parse_params({"range": "all"}).range == "all"
    with pytest.raises(ToolArgumentError):
        tool.parse_params({"range": "some"})


def test_probe_command_line():
    tool = CheckCameraTool(ProbeToolConfig(binary="ffprobe", rw_timeout_us=3_000_000))

    assert tool.build_command("rtsp://cam/1") == [
        "ffprobe",
        "-timeout", "3000000",
        "-v", "error",
        "-show_entries", "stream=codec_name,codec_type",
        "-of", "default=noprint_wrappers=1",
        "rtsp://cam/1",
    ]


def test_probe_requires_url_and_name():
    tool = CheckCameraTool(ProbeToolConfig())

    with pytest.raises(ToolArgumentError):
        tool.parse_params({"url": "rtsp://cam/1"})
    with pytest.raises(ToolArgumentError):
        tool.parse_params({"url": "", "name": "Entrance"})


def test_probe_registry_deadline_exceeds_process_deadline():
    tool = CheckCameraTool(ProbeToolConfig(timeout=10.0))

    assert tool.timeout_seconds > 10.0


@pytest.mark.asyncio
async def test_probe_success(tmp_path: Path):
    binary = _fake_ffprobe(tmp_path, 'echo "codec_name=h264"\necho "codec_type=video"')
    tool = CheckCameraTool(ProbeToolConfig(binary=binary))

    result = await tool.execute(CheckCameraParams(url="rtsp://cam/1", name="Entrance"))

    assert result.success is True
    assert result.content.startswith("Check of camera Entrance complete: stream OK.")
    assert "codec_name=h264" in result.content


@pytest.mark.asyncio
async def test_probe_failure_reports_stderr(tmp_path: Path):
    binary = _fake_ffprobe(tmp_path, 'echo "Connection refused" >&2\nexit 1')
    tool = CheckCameraTool(ProbeToolConfig(binary=binary))

    result = await tool.execute(CheckCameraParams(url="rtsp://cam/1", name="Plaza"))

    assert result.success is False
    assert result.error == "Check of camera Plaza complete: connection failed. Error: Connection refused"


@pytest.mark.asyncio
async def test_probe_timeout_keeps_partial_output(tmp_path: Path):
    binary = _fake_ffprobe(tmp_path, 'echo "opening stream" >&2\nexec sleep 5')
    tool = CheckCameraTool(ProbeToolConfig(binary=binary, timeout=0.3))

    result = await tool.execute(CheckCameraParams(url="rtsp://cam/1", name="Entrance"))

    assert result.success is False
    assert "timed out after 0.3s" in result.error
    assert "opening stream" in result.error


@pytest.mark.asyncio
async def test_probe_missing_binary_is_a_failed_check(tmp_path: Path):
    tool = CheckCameraTool(ProbeToolConfig(binary=str(tmp_path / "no-such-ffprobe")))

    result = await tool.execute(CheckCameraParams(url="rtsp://cam/1", name="Entrance"))

    assert result.success is False
    assert result.error.startswith("Check of camera Entrance complete: connection failed.")


@pytest.mark.asyncio
async def test_probe_output_is_truncated(tmp_path: Path):
    binary = _fake_ffprobe(tmp_path, "printf 'x%.0s' $(seq 1 500)")
    tool = CheckCameraTool(ProbeToolConfig(binary=binary, max_output_chars=50))

    result = await tool.execute(CheckCameraParams(url="rtsp://cam/1", name="Entrance"))

    assert result.success is True
    assert result.content.endswith("x" * 50)
    assert "x" * 51 not in result.content


@pytest.mark.asyncio
async def test_run_process_collects_both_streams(tmp_path: Path):
    binary = _fake_ffprobe(tmp_path, 'echo out\necho err >&2\nexit 3')

    outcome = await run_process([binary], timeout=5.0)

    assert outcome.returncode == 3
    assert outcome.stdout == "out"
    assert outcome.stderr == "err"
    assert outcome.timed_out is False


def test_default_registry_has_all_builtin_tools():
    from camwatch.config import Config

    registry = build_default_registry(Config(cameras=CAMERAS))

    assert registry.list_tools() == ["get_cameras", "check_camera", "get_weather"]
    assert registry.get("get_cameras").cameras == CAMERAS
    assert os.path.basename(registry.get("check_camera").settings.binary) == "ffprobe"


def test_explicit_config_never_loads_global_config(monkeypatch):
    import camwatch.config as config_module
    import camwatch.tools.cameras as cameras_module
    from camwatch.config import Config

    def _broken_config():
        raise AssertionError("global config must not be loaded")

    monkeypatch.setattr(cameras_module, "get_config", _broken_config)
    monkeypatch.setattr(config_module, "get_config", _broken_config)

    tool = ListCamerasTool(cameras=CAMERAS, timeout_seconds=1.5)
    registry = build_default_registry(Config(cameras=CAMERAS))

    assert tool.timeout_seconds == 1.5
    assert registry.get("get_cameras").cameras == CAMERAS
