"""Audio format validation: cheap in-memory checks and ffprobe/ffmpeg deep checks."""

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, NamedTuple

from audiohub.services.media.exceptions import (
    ContentValidationError,
    ProcessTimeoutError,
    ToolLaunchError,
    UnsupportedFormatError,
    UploadRejectedError,
)

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("mp3", "wav", "ogg", "flac", "opus", "m4a", "aac")

# Number of leading bytes needed to recognise every supported signature
MAGIC_HEADER_SIZE = 12

MAX_DURATION_SECS = 3600.0
MIN_SAMPLE_RATE = 8000
MAX_SAMPLE_RATE = 192000
MAX_CHANNELS = 8

DECODE_ERROR_MAX_CHARS = 500

# (declared extension, sniffed format) pairs accepted despite differing
COMPATIBLE_FORMATS = {("opus", "ogg")}


class ValidationResult(NamedTuple):
    """Metadata about a probed audio file."""
    format_name: str | None = None
    codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    duration_secs: float | None = None
    bit_rate: int | None = None


def validate_extension(filename: str) -> str:
    """Return the lower-cased extension of ``filename`` if it is accepted.

    Args:
        filename: Client-supplied file name

    Returns:
        The extension without the leading dot, e.g. ``"mp3"``

    Raises:
        UnsupportedFormatError: If the name has no extension or it is not allowed
    """
    name = Path(filename.replace("\\", "/")).name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem or not ext:
        raise UnsupportedFormatError(
            f"File '{filename}' has no extension. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )

    ext = ext.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise UnsupportedFormatError(
            f"Extension '.{ext}' is not allowed. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    return ext


def detect_format(data: bytes) -> str:
    """Identify the audio container from the leading bytes of a file.

    Args:
        data: At least MAGIC_HEADER_SIZE bytes from the start of the file

    Returns:
        One of ``wav``, ``flac``, ``ogg``, ``mp3``, ``aac``, ``m4a``

    Raises:
        UploadRejectedError: If fewer than MAGIC_HEADER_SIZE bytes were given
        UnsupportedFormatError: If no known signature matches
    """
    if len(data) < MAGIC_HEADER_SIZE:
        raise UploadRejectedError("File is too small to determine its format")

    if data[0:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if data[0:4] == b"fLaC":
        return "flac"
    if data[0:4] == b"OggS":
        return "ogg"
    if data[0:3] == b"ID3":
        return "mp3"

    # MPEG frame sync: 11 set bits
    if data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        layer_bits = data[1] & 0x06
        if layer_bits == 0x00 and (data[1] & 0xF0) == 0xF0:
            # ADTS header: MPEG-4 audio always reports layer 00
            return "aac"
        return "mp3"

    if data[4:8] == b"ftyp":
        return "m4a"

    raise UnsupportedFormatError(
        "Could not determine the format from the file header. The file is not audio."
    )


def check_extension_compatibility(extension: str, detected: str) -> None:
    """Ensure the declared extension matches the sniffed container.

    Raises:
        UploadRejectedError: If the file looks renamed
    """
    if extension == detected or (extension, detected) in COMPATIBLE_FORMATS:
        return
    raise UploadRejectedError(
        f"Extension '.{extension}' does not match the actual format '{detected}'. "
        "Was the file renamed?"
    )


def _parse_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _parse_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(probe_data: dict[str, Any]) -> ValidationResult:
    """Build a ValidationResult from ffprobe's JSON output.

    Stream-level duration and bit rate win over container-level values.

    Raises:
        ContentValidationError: If there is no audio stream
    """
    streams = probe_data.get("streams")
    if not streams:
        raise ContentValidationError("ffprobe found no streams in the file")

    audio_stream = next(
        (stream for stream in streams if stream.get("codec_type") == "audio"), None
    )
    if audio_stream is None:
        raise ContentValidationError("File does not contain an audio stream")

    container = probe_data.get("format") or {}

    duration = _parse_float(audio_stream.get("duration"))
    if duration is None:
        duration = _parse_float(container.get("duration"))

    bit_rate = _parse_int(audio_stream.get("bit_rate"))
    if bit_rate is None:
        bit_rate = _parse_int(container.get("bit_rate"))

    return ValidationResult(
        format_name=container.get("format_name"),
        codec=audio_stream.get("codec_name"),
        sample_rate=_parse_int(audio_stream.get("sample_rate")),
        channels=_parse_int(audio_stream.get("channels")),
        duration_secs=duration,
        bit_rate=bit_rate,
    )


def check_audio_policy(result: ValidationResult) -> None:
    """Enforce duration, sample rate and channel bounds.

    Values the probe did not report are not checked.

    Raises:
        ContentValidationError: On the first violated bound
    """
    if result.duration_secs is not None:
        if result.duration_secs <= 0:
            raise ContentValidationError("Audio has zero or negative duration")
        if result.duration_secs > MAX_DURATION_SECS:
            raise ContentValidationError(
                f"Audio is too long: {result.duration_secs:.0f} s "
                f"(maximum: {MAX_DURATION_SECS:.0f} s)"
            )

    if result.sample_rate is not None:
        if not MIN_SAMPLE_RATE <= result.sample_rate <= MAX_SAMPLE_RATE:
            raise ContentValidationError(
                f"Unsupported sample rate: {result.sample_rate} Hz "
                f"(allowed: {MIN_SAMPLE_RATE}-{MAX_SAMPLE_RATE} Hz)"
            )

    if result.channels is not None:
        if not 1 <= result.channels <= MAX_CHANNELS:
            raise ContentValidationError(
                f"Unsupported channel count: {result.channels} (allowed: 1-{MAX_CHANNELS})"
            )


def probe_audio(file_path: Path, timeout: float = 30) -> ValidationResult:
    """Probe an audio file with ffprobe and enforce the content policy.

    Args:
        file_path: Path to the uploaded file
        timeout: Seconds before ffprobe is killed

    Returns:
        Metadata of the first audio stream

    Raises:
        ContentValidationError: If ffprobe rejects the file or a policy bound is violated
        ToolLaunchError: If ffprobe cannot be started
        ProcessTimeoutError: If ffprobe does not finish in time
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        "-select_streams", "a:0",
        str(file_path),
    ]

    logger.info("Probing audio with ffprobe", extra={"file_path": str(file_path)})

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        logger.error("ffprobe timeout", extra={"file_path": str(file_path), "timeout": timeout})
        raise ProcessTimeoutError(f"ffprobe timed out after {timeout} seconds") from e
    except OSError as e:
        raise ToolLaunchError(f"Could not start ffprobe: {e}. Is ffmpeg installed?") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise ContentValidationError(
            f"ffprobe could not read the file: {stderr or 'unknown error'}"
        )

    try:
        probe_data = json.loads(result.stdout)
    except (json.JSONDecodeError, TypeError) as e:
        raise ContentValidationError(f"Could not parse ffprobe output: {e}") from e
    if not isinstance(probe_data, dict):
        raise ContentValidationError("Could not parse ffprobe output: not a JSON object")

    metadata = parse_probe_output(probe_data)
    check_audio_policy(metadata)

    logger.info(
        "ffprobe validation passed",
        extra={
            "file_path": str(file_path),
            "codec": metadata.codec,
            "sample_rate": metadata.sample_rate,
            "channels": metadata.channels,
            "duration": metadata.duration_secs,
        },
    )
    return metadata


def check_decode(file_path: Path, timeout: float = 300) -> None:
    """Decode the whole file, discarding output, to catch corrupt bodies.

    Raises:
        ContentValidationError: If ffmpeg reports any decoding error
        ToolLaunchError: If ffmpeg cannot be started
        ProcessTimeoutError: If decoding does not finish in time
    """
    cmd = ["ffmpeg", "-v", "error", "-i", str(file_path), "-f", "null", "-"]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        logger.error(
            "ffmpeg decode check timeout",
            extra={"file_path": str(file_path), "timeout": timeout},
        )
        raise ProcessTimeoutError(f"Decode check timed out after {timeout} seconds") from e
    except OSError as e:
        raise ToolLaunchError(f"Could not start ffmpeg: {e}") from e

    stderr = (result.stderr or "").strip()
    if result.returncode != 0 or stderr:
        if stderr:
            message = f"Decoding errors: {stderr[:DECODE_ERROR_MAX_CHARS]}"
        else:
            message = f"ffmpeg exited with code {result.returncode}"
        raise ContentValidationError(message)

    logger.info("ffmpeg decode check passed", extra={"file_path": str(file_path)})
