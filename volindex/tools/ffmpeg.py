"""Single-frame video thumbnails via ffmpeg."""

import hashlib
import logging
import os
import subprocess
from pathlib import Path

from volindex.tools.ffprobe import require_binary

logger = logging.getLogger(__name__)

UNSUPPORTED_THUMB_EXTENSIONS = frozenset({"r3d", "braw"})


def thumb_target(thumbs_dir: Path, target_id: str, root_path: str, relative_path: str) -> Path:
    digest = hashlib.sha1(f"{target_id}|{root_path}|{relative_path}".encode()).hexdigest()
    return thumbs_dir / f"{digest}.jpg"


class ThumbnailExtractor:
    """Grabs one scaled frame a few seconds into a video."""

    def __init__(self, timeout_seconds: float = 15.0, seek_seconds: int = 3, width: int = 320) -> None:
        self.binary = require_binary("ffmpeg")
        self.timeout_seconds = timeout_seconds
        self.seek_seconds = seek_seconds
        self.width = width

    def supports(self, extension: str | None) -> bool:
        return (extension or "").lower() not in UNSUPPORTED_THUMB_EXTENSIONS

    def extract(self, input_path: str, output_path: Path) -> bool:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.binary,
            "-y",
            "-ss", str(self.seek_seconds),
            "-i", input_path,
            "-frames:v", "1",
            "-vf", f"scale={self.width}:-1",
            "-q:v", "4",
            str(output_path),
        ]

        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg timed out on %s", input_path)
            return False
        except OSError as e:
            logger.warning("ffmpeg failed on %s: %s", input_path, e)
            return False

        if result.returncode != 0 or not os.path.exists(output_path):
            logger.debug("No thumbnail for %s: %s", input_path, result.stderr.strip()[-200:])
            return False
        return True
