"""ffprobe wrapper for media metadata extraction."""

import json
import logging
import shutil
import subprocess

from volindex.database.models import MediaMetadata

logger = logging.getLogger(__name__)


class ProbeNotFoundError(Exception):
    """Raised when ffprobe or ffmpeg is not installed."""


def require_binary(name: str) -> str:
    path = shutil.which(name)
    if not path:
        raise ProbeNotFoundError(
            f"{name} is required but not found.\n"
            "Please install ffmpeg: https://ffmpeg.org/download.html"
        )
    return path


class FfprobeRunner:
    """Wrapper for ffprobe command execution."""

    FFPROBE_ARGS = ["-v", "error", "-print_format", "json", "-show_format", "-show_streams"]

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self.binary = require_binary("ffprobe")
        self.timeout_seconds = timeout_seconds

    def probe(self, file_path: str) -> MediaMetadata | None:
        """Probe one file. Returns None when the file cannot be probed."""
        cmd = [self.binary, *self.FFPROBE_ARGS, file_path]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.warning("ffprobe timed out on %s", file_path)
            return None
        except OSError as e:
            logger.warning("ffprobe failed on %s: %s", file_path, e)
            return None

        if result.returncode != 0:
            logger.debug("ffprobe exited %d on %s: %s", result.returncode, file_path, result.stderr.strip())
            return None

        return parse_probe_output(result.stdout)


def parse_probe_output(stdout: str) -> MediaMetadata | None:
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    fmt = data.get("format") or {}
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), {})
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})

    return MediaMetadata(
        duration_sec=_to_float(fmt.get("duration")),
        width=video.get("width") or None,
        height=video.get("height") or None,
        video_codec=video.get("codec_name") or None,
        audio_codec=audio.get("codec_name") or None,
        audio_sample_rate=_to_int(audio.get("sample_rate")),
        audio_channels=audio.get("channels") or None,
        bitrate=_to_int(fmt.get("bit_rate")),
        format_name=fmt.get("format_name") or None,
        raw_json=json.dumps(data),
    )


def _to_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
