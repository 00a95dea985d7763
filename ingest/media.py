# ingest/media.py
import json, subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import InvalidDimensions, ProbeError, RemuxError

FASTSTART_SUFFIX = ".processing"

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO  = 9 / 16
RATIO_TOLERANCE = 0.1


class AspectCategory(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT  = "portrait"
    OTHER     = "other"


@dataclass(frozen=True)
class StreamMetadata:
    width: int
    height: int
    codec_name: Optional[str] = None
    codec_type: Optional[str] = None
    duration: Optional[float] = None
    display_aspect_ratio: Optional[str] = None
    stream_count: int = 1


def classify_aspect(width: int, height: int) -> AspectCategory:
    """寬高比分類；先判斷 landscape 再判斷 portrait，邊界值算在範圍內。"""
    if height <= 0 or width <= 0:
        raise InvalidDimensions(f"invalid dimensions {width}x{height}")
    ratio = width / height
    if abs(ratio - LANDSCAPE_RATIO) <= RATIO_TOLERANCE:
        return AspectCategory.LANDSCAPE
    if abs(ratio - PORTRAIT_RATIO) <= RATIO_TOLERANCE:
        return AspectCategory.PORTRAIT
    return AspectCategory.OTHER


class MediaTool(Protocol):
    def probe(self, path: Path) -> StreamMetadata: ...
    def remux(self, path: Path) -> Path: ...


def _int_field(stream: dict, name: str) -> int:
    v = stream.get(name)
    if isinstance(v, bool) or not isinstance(v, int):
        raise ProbeError(f"ffprobe stream has no integer {name}")
    return v


def parse_probe_output(raw: str) -> StreamMetadata:
    try:
        data = json.loads(raw or "")
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe output is not json: {e}") from e
    if not isinstance(data, dict):
        raise ProbeError("ffprobe output is not a json object")

    streams = data.get("streams") or []
    if not isinstance(streams, list) or not streams:
        raise ProbeError("ffprobe found no streams")

    # 有標記 video 的就用第一個 video stream，否則退回第一個 stream
    first = next((s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"), streams[0])
    if not isinstance(first, dict):
        raise ProbeError("ffprobe stream entry is not an object")

    duration = None
    try:
        if first.get("duration") is not None:
            duration = float(first["duration"])
    except (TypeError, ValueError):
        duration = None

    return StreamMetadata(
        width=_int_field(first, "width"),
        height=_int_field(first, "height"),
        codec_name=first.get("codec_name"),
        codec_type=first.get("codec_type"),
        duration=duration,
        display_aspect_ratio=first.get("display_aspect_ratio"),
        stream_count=len(streams),
    )


class FFmpegTool:
    """用 ffprobe / ffmpeg 子行程實作 MediaTool。"""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe",
                 timeout: Optional[float] = 600.0, log: Callable[[str], None] = print):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout
        self._log = log

    def _run(self, cmd: list[str], log_prefix: str) -> subprocess.CompletedProcess:
        self._log(f"{log_prefix} run: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def _log_stderr(self, log_prefix: str, stderr: Optional[str]):
        for ln in (stderr or "").strip().splitlines()[-20:]:
            self._log(f"{log_prefix} {ln}")

    def probe(self, path: Path) -> StreamMetadata:
        cmd = [self.ffprobe_bin, "-v", "error", "-print_format", "json", "-show_streams", str(path)]
        try:
            rc = self._run(cmd, "[probe]")
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeError(f"ffprobe failed to run: {e}") from e
        if rc.returncode != 0:
            self._log_stderr("[probe]", rc.stderr)
            raise ProbeError(f"ffprobe exited with code {rc.returncode}")
        meta = parse_probe_output(rc.stdout)
        self._log(f"[probe] {meta.width}x{meta.height} codec={meta.codec_name} streams={meta.stream_count}")
        return meta

    def remux(self, path: Path) -> Path:
        out = Path(str(path) + FASTSTART_SUFFIX)
        cmd = [
            self.ffmpeg_bin, "-y", "-hide_banner", "-loglevel", "error",
            "-i", str(path),
            "-c", "copy",
            "-movflags", "+faststart",
            "-f", "mp4",
            str(out),
        ]
        try:
            rc = self._run(cmd, "[remux]")
        except (OSError, subprocess.TimeoutExpired) as e:
            out.unlink(missing_ok=True)
            raise RemuxError(f"ffmpeg failed to run: {e}") from e
        if rc.returncode != 0:
            self._log_stderr("[remux]", rc.stderr)
            out.unlink(missing_ok=True)
            raise RemuxError(f"ffmpeg exited with code {rc.returncode}")
        if not out.exists():
            raise RemuxError(f"ffmpeg produced no output at {out}")
        return out
