"""Pytest configuration and shared fixtures."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest


def make_wav(size: int = 4096) -> bytes:
    """Bytes with a RIFF/WAVE header, padded to ``size``."""
    header = b"RIFF" + (size - 8).to_bytes(4, "little") + b"WAVE" + b"fmt "
    return header + b"\x00" * (size - len(header))


def make_mp3(size: int = 4096) -> bytes:
    """Bytes starting with an ID3 tag header, padded to ``size``."""
    header = b"ID3\x04\x00\x00\x00\x00\x00\x00\x00\x00"
    return header + b"\x00" * (size - len(header))


def default_probe_output() -> dict:
    return {
        "streams": [
            {
                "codec_type": "audio",
                "codec_name": "pcm_s16le",
                "sample_rate": "44100",
                "channels": 2,
                "duration": "12.5",
                "bit_rate": "1411200",
            }
        ],
        "format": {"format_name": "wav", "duration": "12.5", "bit_rate": "1411200"},
    }


class FakeMediaTools:
    """Replays ffprobe and ffmpeg behaviour for ``subprocess.run``.

    The HLS command writes a playlist, an init segment and ``segments``
    media segments into the requested output directory.
    """

    def __init__(self):
        self.probe = default_probe_output()
        self.probe_returncode = 0
        self.probe_stderr = ""
        self.decode_stderr = ""
        self.hls_returncode = 0
        self.hls_stderr = ""
        self.segments = 3
        self.calls: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(
                cmd, self.probe_returncode, stdout=json.dumps(self.probe), stderr=self.probe_stderr
            )

        output_format = cmd[cmd.index("-f") + 1]
        if output_format == "null":
            return subprocess.CompletedProcess(
                cmd, 1 if self.decode_stderr else 0, stdout="", stderr=self.decode_stderr
            )

        if self.hls_returncode != 0:
            return subprocess.CompletedProcess(cmd, self.hls_returncode, stdout="", stderr=self.hls_stderr)

        playlist = Path(cmd[-1])
        output_dir = playlist.parent
        (output_dir / "init.mp4").write_bytes(b"\x00\x00\x00\x18ftypiso6")
        lines = ["#EXTM3U", "#EXT-X-VERSION:7", "#EXT-X-TARGETDURATION:6", '#EXT-X-MAP:URI="init.mp4"']
        for index in range(self.segments):
            name = f"seg_{index:05d}.m4s"
            (output_dir / name).write_bytes(b"segment-%d" % index)
            lines.extend(["#EXTINF:6.0,", name])
        lines.append("#EXT-X-ENDLIST")
        playlist.write_text("\n".join(lines) + "\n")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def media_tools():
    """Patch subprocess.run with a scripted ffprobe/ffmpeg."""
    tools = FakeMediaTools()
    with patch("audiohub.services.media.validation.subprocess.run", side_effect=tools):
        yield tools
