"""HLS packaging of validated audio using ffmpeg."""

import logging
import shutil
import subprocess
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path

from audiohub.services.media.exceptions import (
    ProcessTimeoutError,
    ToolLaunchError,
    TranscodeError,
)

logger = logging.getLogger(__name__)

PLAYLIST_NAME = "playlist.m3u8"
INIT_SEGMENT_NAME = "init.mp4"
SEGMENT_PATTERN = "seg_%05d.m4s"
SEGMENT_DURATION_SECS = 6

# Output is normalised regardless of the source format
TARGET_CODEC = "aac"
TARGET_BITRATE = "128k"
TARGET_CHANNELS = 2
TARGET_SAMPLE_RATE = 48000


@dataclass
class StagingPackage:
    """A transcoder output directory holding a playlist and its segments."""

    output_dir: Path
    playlist_name: str = PLAYLIST_NAME

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    def list_files(self) -> list[Path]:
        """Return the package's artifact files in sorted order."""
        return sorted(path for path in self.output_dir.iterdir() if path.is_file())

    def release(self) -> None:
        """Delete the staging directory. Safe to call more than once."""
        if self.output_dir.exists():
            shutil.rmtree(self.output_dir, ignore_errors=True)
            logger.debug("Released staging package", extra={"output_dir": str(self.output_dir)})


def build_hls_command(input_path: Path, output_dir: Path) -> list[str]:
    """Build the ffmpeg command line that writes an fMP4 HLS package."""
    return [
        "ffmpeg",
        "-i", str(input_path),
        "-v", "error",
        "-c:a", TARGET_CODEC,
        "-b:a", TARGET_BITRATE,
        "-ac", str(TARGET_CHANNELS),
        "-ar", str(TARGET_SAMPLE_RATE),
        "-f", "hls",
        "-hls_time", str(SEGMENT_DURATION_SECS),
        "-hls_playlist_type", "vod",
        "-hls_segment_type", "fmp4",
        "-hls_fmp4_init_filename", INIT_SEGMENT_NAME,
        "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
        str(output_dir / PLAYLIST_NAME),
    ]


def convert_to_hls(
    input_path: Path,
    staging_root: str | None = None,
    timeout: float = 600,
) -> StagingPackage:
    """Transcode an audio file into a segmented HLS package.

    The package is written to a fresh ``hls_<uuid>`` directory so concurrent
    conversions never share files.

    Args:
        input_path: Path to the validated audio file
        staging_root: Parent directory for the package, system temp if None
        timeout: Seconds before ffmpeg is killed

    Returns:
        The staging package; the caller owns it and must release it

    Raises:
        TranscodeError: If ffmpeg fails or produces no playlist
        ToolLaunchError: If ffmpeg cannot be started
        ProcessTimeoutError: If conversion does not finish in time
    """
    root = Path(staging_root) if staging_root else Path(tempfile.gettempdir())
    output_dir = root / f"hls_{uuid.uuid4()}"
    try:
        output_dir.mkdir(parents=True)
    except OSError as e:
        raise TranscodeError(f"Could not create HLS staging directory: {e}") from e

    package = StagingPackage(output_dir=output_dir)
    cmd = build_hls_command(input_path, output_dir)

    logger.info(
        "Converting audio to HLS with ffmpeg",
        extra={"input": str(input_path), "output_dir": str(output_dir)},
    )

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        package.release()
        logger.error("ffmpeg HLS conversion timeout", extra={"input": str(input_path), "timeout": timeout})
        raise ProcessTimeoutError(f"HLS conversion timed out after {timeout} seconds") from e
    except OSError as e:
        package.release()
        raise ToolLaunchError(f"Could not start ffmpeg for HLS conversion: {e}") from e

    if result.returncode != 0:
        package.release()
        stderr = (result.stderr or "").strip()
        error_msg = stderr or f"exit code {result.returncode}"
        logger.error(
            "ffmpeg HLS conversion failed",
            extra={"input": str(input_path), "returncode": result.returncode, "error": error_msg},
        )
        raise TranscodeError(f"ffmpeg HLS conversion failed: {error_msg}")

    if not package.playlist_path.exists():
        package.release()
        raise TranscodeError("ffmpeg did not produce an HLS playlist")

    logger.info(
        "HLS conversion complete",
        extra={"output_dir": str(output_dir), "file_count": len(package.list_files())},
    )
    return package
