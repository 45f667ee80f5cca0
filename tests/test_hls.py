"""Tests for HLS packaging."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from audiohub.services.media.exceptions import ProcessTimeoutError, ToolLaunchError, TranscodeError
from audiohub.services.media.hls import (
    INIT_SEGMENT_NAME,
    PLAYLIST_NAME,
    StagingPackage,
    build_hls_command,
    convert_to_hls,
)


def test_build_hls_command():
    """Test the ffmpeg arguments for fMP4 HLS output."""
    cmd = build_hls_command(Path("/in/audio.wav"), Path("/out"))

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "/in/audio.wav"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert cmd[cmd.index("-ac") + 1] == "2"
    assert cmd[cmd.index("-ar") + 1] == "48000"
    assert cmd[cmd.index("-hls_time") + 1] == "6"
    assert cmd[cmd.index("-hls_playlist_type") + 1] == "vod"
    assert cmd[cmd.index("-hls_segment_type") + 1] == "fmp4"
    assert cmd[cmd.index("-hls_segment_filename") + 1] == "/out/seg_%05d.m4s"
    assert cmd[-1] == "/out/playlist.m3u8"


def test_convert_to_hls_success(tmp_path, media_tools):
    """Test conversion produces a package in a fresh staging directory."""
    package = convert_to_hls(tmp_path / "input.wav", staging_root=str(tmp_path))

    assert package.output_dir.parent == tmp_path
    assert package.output_dir.name.startswith("hls_")
    assert package.playlist_path.read_text().startswith("#EXTM3U")

    names = [path.name for path in package.list_files()]
    assert names == sorted(names)
    assert PLAYLIST_NAME in names
    assert INIT_SEGMENT_NAME in names
    assert "seg_00000.m4s" in names

    package.release()
    assert not package.output_dir.exists()


def test_concurrent_conversions_use_distinct_directories(tmp_path, media_tools):
    first = convert_to_hls(tmp_path / "a.wav", staging_root=str(tmp_path))
    second = convert_to_hls(tmp_path / "b.wav", staging_root=str(tmp_path))

    assert first.output_dir != second.output_dir


def test_convert_to_hls_failure_removes_directory(tmp_path, media_tools):
    """Test a failing ffmpeg run leaves no staging directory behind."""
    media_tools.hls_returncode = 1
    media_tools.hls_stderr = "Conversion failed!"

    with pytest.raises(TranscodeError) as exc_info:
        convert_to_hls(tmp_path / "input.wav", staging_root=str(tmp_path))

    assert "Conversion failed!" in str(exc_info.value)
    assert list(tmp_path.iterdir()) == []


def test_convert_to_hls_missing_playlist(tmp_path):
    with patch("audiohub.services.media.hls.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="", stderr="")
        with pytest.raises(TranscodeError):
            convert_to_hls(tmp_path / "input.wav", staging_root=str(tmp_path))

    assert list(tmp_path.iterdir()) == []


def test_convert_to_hls_timeout(tmp_path):
    with patch("audiohub.services.media.hls.subprocess.run") as mock_run:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="ffmpeg", timeout=600)
        with pytest.raises(ProcessTimeoutError):
            convert_to_hls(tmp_path / "input.wav", staging_root=str(tmp_path))

    assert list(tmp_path.iterdir()) == []


def test_convert_to_hls_tool_missing(tmp_path):
    with patch("audiohub.services.media.hls.subprocess.run") as mock_run:
        mock_run.side_effect = FileNotFoundError("ffmpeg")
        with pytest.raises(ToolLaunchError):
            convert_to_hls(tmp_path / "input.wav", staging_root=str(tmp_path))


def test_release_is_idempotent(tmp_path):
    output_dir = tmp_path / "hls_test"
    output_dir.mkdir()
    (output_dir / PLAYLIST_NAME).write_text("#EXTM3U\n")
    package = StagingPackage(output_dir=output_dir)

    package.release()
    package.release()

    assert not output_dir.exists()
