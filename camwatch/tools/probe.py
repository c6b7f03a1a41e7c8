"""Camera stream check tool backed by ffprobe."""

import asyncio
from dataclasses import dataclass
from typing import Any

from camwatch.config import ProbeToolConfig, get_config
from camwatch.logging import get_logger
from camwatch.tools.registry import Tool, ToolResult, require_str

log = get_logger(__name__)

CHECK_TOOL_NAME = "check_camera"

# Registry deadline sits above the process deadline so partial output survives.
_REGISTRY_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class CheckCameraParams:
    url: str
    name: str


@dataclass
class ProcessOutcome:
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        sink.extend(chunk)


async def run_process(argv: list[str], timeout: float) -> ProcessOutcome:
    """Run ``argv`` with a hard deadline, keeping whatever it printed so far."""
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    out_buf = bytearray()
    err_buf = bytearray()
    readers = asyncio.gather(
        _drain(process.stdout, out_buf),
        _drain(process.stderr, err_buf),
        process.wait(),
    )
    timed_out = False
    try:
        await asyncio.wait_for(asyncio.shield(readers), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        if process.returncode is None:
            process.kill()
        # pipes hit EOF once the process is gone
        await readers
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
        await readers
        raise

    return ProcessOutcome(
        returncode=process.returncode,
        stdout=out_buf.decode("utf-8", errors="replace").strip(),
        stderr=err_buf.decode("utf-8", errors="replace").strip(),
        timed_out=timed_out,
    )


class CheckCameraTool(Tool):
    """Check one camera's RTSP stream with ffprobe."""

    name = CHECK_TOOL_NAME
    description = (
        "Check a camera's status by probing its RTSP address (as returned by get_cameras) "
        "with ffprobe. The result contains the ffprobe output."
    )
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The camera's RTSP address"},
            "name": {"type": "string", "description": "The camera's name"},
        },
        "required": ["url", "name"],
    }

    def __init__(self, settings: ProbeToolConfig | None = None):
        self.settings = settings or get_config().tools.probe
        self.timeout_seconds = float(self.settings.timeout) + _REGISTRY_GRACE_SECONDS

    def parse_params(self, arguments: dict[str, Any]) -> CheckCameraParams:
        return CheckCameraParams(
            url=require_str(self.name, arguments, "url"),
            name=require_str(self.name, arguments, "name"),
        )

    def build_command(self, url: str) -> list[str]:
        return [
            self.settings.binary,
            "-timeout", str(int(self.settings.rw_timeout_us)),
            "-v", "error",
            "-show_entries", "stream=codec_name,codec_type",
            "-of", "default=noprint_wrappers=1",
            url,
        ]

    async def execute(self, params: CheckCameraParams) -> ToolResult:
        limit = max(1, int(self.settings.max_output_chars))
        argv = self.build_command(params.url)
        try:
            log.info("Probing camera stream", camera=params.name, url=params.url)
            outcome = await run_process(argv, timeout=float(self.settings.timeout))
        except OSError as e:
            log.error("Could not start probe", camera=params.name, binary=self.settings.binary, error=str(e))
            return ToolResult(
                success=False,
                error=f"Check of camera {params.name} complete: connection failed. Error: {e}",
            )

        if outcome.returncode == 0 and not outcome.timed_out:
            return ToolResult(
                success=True,
                content=(
                    f"Check of camera {params.name} complete: stream OK. "
                    f"ffprobe output: {outcome.stdout[:limit]}"
                ),
            )

        if outcome.timed_out:
            reason = f"timed out after {self.settings.timeout:g}s"
            partial = (outcome.stderr or outcome.stdout)[:limit]
            detail = f"{reason}; partial output: {partial}" if partial else reason
        else:
            detail = (outcome.stderr or outcome.stdout or f"ffprobe exited with code {outcome.returncode}")[:limit]
        log.warning("Camera probe failed", camera=params.name, returncode=outcome.returncode, timed_out=outcome.timed_out)
        return ToolResult(
            success=False,
            error=f"Check of camera {params.name} complete: connection failed. Error: {detail}",
        )
