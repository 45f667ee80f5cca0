"""Tests for storage backends."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from google.api_core.exceptions import Forbidden, NotFound

from audiohub.core.config import Settings
from audiohub.services.media.hls import StagingPackage
from audiohub.storage.base import guess_content_type
from audiohub.storage.exceptions import ObjectNotFoundError, StorageError
from audiohub.storage.factory import get_storage_backend
from audiohub.storage.gcs import GCSStorageBackend
from audiohub.storage.local import LocalStorageBackend
from audiohub.storage.s3 import S3StorageBackend


def _client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def package_dir(tmp_path):
    output_dir = tmp_path / "hls_package"
    output_dir.mkdir()
    (output_dir / "seg_00001.m4s").write_bytes(b"segment-1")
    (output_dir / "playlist.m3u8").write_text("#EXTM3U\n")
    (output_dir / "seg_00000.m4s").write_bytes(b"segment-0")
    (output_dir / "init.mp4").write_bytes(b"init")
    return output_dir


@pytest.mark.parametrize(
    "key, expected",
    [
        ("a/b/playlist.m3u8", "application/vnd.apple.mpegurl"),
        ("a/b/seg_00000.m4s", "video/iso.segment"),
        ("a/b/init.mp4", "video/mp4"),
        ("a/b/seg0.ts", "video/mp2t"),
        ("a/b/readme", "application/octet-stream"),
        ("a/b/notes.txt", "application/octet-stream"),
    ],
)
def test_guess_content_type(key, expected):
    assert guess_content_type(key) == expected


class TestLocalStorageBackend:
    """Tests for local storage backend."""

    @pytest.fixture
    def backend(self, tmp_path):
        return LocalStorageBackend(tmp_path / "storage")

    def test_get_backend_name(self, backend):
        assert backend.get_backend_name() == "local"

    @pytest.mark.asyncio
    async def test_upload_and_get(self, backend, tmp_path):
        source = tmp_path / "source.m3u8"
        source.write_text("#EXTM3U\n")

        await backend.ensure_bucket("audio-hls")
        await backend.upload_file(source, "audio-hls", "song/abc/playlist.m3u8")

        stored = tmp_path / "storage" / "audio-hls" / "song" / "abc" / "playlist.m3u8"
        assert stored.read_text() == "#EXTM3U\n"
        assert await backend.get_object("audio-hls", "song/abc/playlist.m3u8") == b"#EXTM3U\n"

    @pytest.mark.asyncio
    async def test_get_missing_object(self, backend):
        with pytest.raises(ObjectNotFoundError):
            await backend.get_object("audio-hls", "missing/playlist.m3u8")

    @pytest.mark.asyncio
    async def test_delete_reports_presence(self, backend, tmp_path):
        source = tmp_path / "seg.m4s"
        source.write_bytes(b"data")
        await backend.upload_file(source, "audio-hls", "song/abc/seg_00000.m4s")

        assert await backend.delete_object("audio-hls", "song/abc/seg_00000.m4s") is True
        assert await backend.delete_object("audio-hls", "song/abc/seg_00000.m4s") is False

    @pytest.mark.asyncio
    async def test_path_traversal_is_refused(self, backend):
        with pytest.raises(ObjectNotFoundError):
            await backend.get_object("audio-hls", "../../etc/passwd")

    @pytest.mark.asyncio
    async def test_upload_with_traversal_key_is_storage_error(self, backend, tmp_path):
        source = tmp_path / "seg.m4s"
        source.write_bytes(b"data")

        with pytest.raises(StorageError) as exc_info:
            await backend.upload_file(source, "audio-hls", "../outside/seg.m4s")
        assert not isinstance(exc_info.value, ObjectNotFoundError)
        assert exc_info.value.status_code == 500
        assert not (tmp_path / "storage" / "outside").exists()

    @pytest.mark.asyncio
    async def test_invalid_bucket(self, backend):
        with pytest.raises(StorageError):
            await backend.ensure_bucket("../outside")

    @pytest.mark.asyncio
    async def test_upload_package_in_sorted_order(self, backend, package_dir):
        keys = await backend.upload_package(StagingPackage(output_dir=package_dir), "audio-hls", "song/abc")

        assert keys == [
            "song/abc/init.mp4",
            "song/abc/playlist.m3u8",
            "song/abc/seg_00000.m4s",
            "song/abc/seg_00001.m4s",
        ]
        assert await backend.get_object("audio-hls", "song/abc/seg_00001.m4s") == b"segment-1"

    @pytest.mark.asyncio
    async def test_upload_package_stops_at_first_failure(self, backend, package_dir):
        calls = []

        async def flaky_upload(local_path: Path, bucket: str, object_key: str) -> None:
            calls.append(object_key)
            if object_key.endswith("playlist.m3u8"):
                raise StorageError("disk full")

        backend.upload_file = flaky_upload

        with pytest.raises(StorageError):
            await backend.upload_package(StagingPackage(output_dir=package_dir), "audio-hls", "p")

        assert calls == ["p/init.mp4", "p/playlist.m3u8"]


class TestS3StorageBackend:
    """Tests for the S3-compatible backend with a mocked boto3 client."""

    @pytest.fixture
    def s3_client(self):
        with patch("audiohub.storage.s3.boto3.client") as mock_factory:
            client = MagicMock()
            mock_factory.return_value = client
            yield client

    @pytest.fixture
    def backend(self, s3_client):
        return S3StorageBackend(endpoint_url="http://localhost:9000", access_key_id="key", secret_access_key="secret")

    def test_get_backend_name(self, backend):
        assert backend.get_backend_name() == "s3"

    @pytest.mark.asyncio
    async def test_ensure_bucket_tolerates_existing(self, backend, s3_client):
        s3_client.create_bucket.side_effect = _client_error("BucketAlreadyOwnedByYou", "CreateBucket")

        await backend.ensure_bucket("audio-hls")

        s3_client.create_bucket.assert_called_once_with(Bucket="audio-hls")

    @pytest.mark.asyncio
    async def test_ensure_bucket_failure(self, backend, s3_client):
        s3_client.create_bucket.side_effect = _client_error("AccessDenied", "CreateBucket")

        with pytest.raises(StorageError):
            await backend.ensure_bucket("audio-hls")

    @pytest.mark.asyncio
    async def test_upload_sets_content_type(self, backend, s3_client, tmp_path):
        source = tmp_path / "playlist.m3u8"
        source.write_text("#EXTM3U\n")

        await backend.upload_file(source, "audio-hls", "song/abc/playlist.m3u8")

        s3_client.upload_file.assert_called_once_with(
            str(source),
            "audio-hls",
            "song/abc/playlist.m3u8",
            ExtraArgs={"ContentType": "application/vnd.apple.mpegurl"},
        )

    @pytest.mark.asyncio
    async def test_upload_client_error(self, backend, s3_client, tmp_path):
        s3_client.upload_file.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(StorageError):
            await backend.upload_file(tmp_path / "x.m4s", "audio-hls", "song/abc/x.m4s")

    @pytest.mark.asyncio
    async def test_get_object(self, backend, s3_client):
        body = MagicMock()
        body.read.return_value = b"#EXTM3U\n"
        s3_client.get_object.return_value = {"Body": body}

        assert await backend.get_object("audio-hls", "song/abc/playlist.m3u8") == b"#EXTM3U\n"

    @pytest.mark.asyncio
    async def test_get_missing_object(self, backend, s3_client):
        s3_client.get_object.side_effect = _client_error("NoSuchKey", "GetObject")

        with pytest.raises(ObjectNotFoundError):
            await backend.get_object("audio-hls", "missing")

    @pytest.mark.asyncio
    async def test_delete_missing_object_returns_false(self, backend, s3_client):
        s3_client.head_object.side_effect = _client_error("404", "HeadObject")

        assert await backend.delete_object("audio-hls", "song/abc/seg_00007.m4s") is False
        s3_client.delete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_existing_object(self, backend, s3_client):
        assert await backend.delete_object("audio-hls", "song/abc/seg_00000.m4s") is True
        s3_client.delete_object.assert_called_once_with(Bucket="audio-hls", Key="song/abc/seg_00000.m4s")

    @pytest.mark.asyncio
    async def test_delete_failure(self, backend, s3_client):
        s3_client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")

        with pytest.raises(StorageError):
            await backend.delete_object("audio-hls", "song/abc/seg_00000.m4s")


class TestGCSStorageBackend:
    """Tests for GCS storage backend."""

    @pytest.fixture
    def gcs_client(self):
        with patch("audiohub.storage.gcs.storage.Client") as mock_client_cls:
            client = MagicMock()
            mock_client_cls.return_value = client
            yield client

    @pytest.fixture
    def backend(self, gcs_client):
        return GCSStorageBackend(project_id="test-project")

    def test_get_backend_name(self, backend):
        assert backend.get_backend_name() == "gcs"

    @pytest.mark.asyncio
    async def test_ensure_bucket_creates_missing(self, backend, gcs_client):
        gcs_client.lookup_bucket.return_value = None

        await backend.ensure_bucket("audio-hls")

        gcs_client.create_bucket.assert_called_once_with("audio-hls")

    @pytest.mark.asyncio
    async def test_ensure_bucket_existing(self, backend, gcs_client):
        gcs_client.lookup_bucket.return_value = MagicMock()

        await backend.ensure_bucket("audio-hls")

        gcs_client.create_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_upload_file(self, backend, gcs_client, tmp_path):
        blob = gcs_client.bucket.return_value.blob.return_value
        source = tmp_path / "seg_00000.m4s"

        await backend.upload_file(source, "audio-hls", "song/abc/seg_00000.m4s")

        gcs_client.bucket.assert_called_with("audio-hls")
        blob.upload_from_filename.assert_called_once()
        assert blob.upload_from_filename.call_args[1]["content_type"] == "video/iso.segment"

    @pytest.mark.asyncio
    async def test_upload_failure(self, backend, gcs_client, tmp_path):
        blob = gcs_client.bucket.return_value.blob.return_value
        blob.upload_from_filename.side_effect = Forbidden("denied")

        with pytest.raises(StorageError):
            await backend.upload_file(tmp_path / "x", "audio-hls", "x")

    @pytest.mark.asyncio
    async def test_get_missing_object(self, backend, gcs_client):
        blob = gcs_client.bucket.return_value.blob.return_value
        blob.download_as_bytes.side_effect = NotFound("missing")

        with pytest.raises(ObjectNotFoundError):
            await backend.get_object("audio-hls", "missing")

    @pytest.mark.asyncio
    async def test_delete_missing_object_returns_false(self, backend, gcs_client):
        blob = gcs_client.bucket.return_value.blob.return_value
        blob.delete.side_effect = NotFound("missing")

        assert await backend.delete_object("audio-hls", "song/abc/seg_00003.m4s") is False

    @pytest.mark.asyncio
    async def test_delete_failure(self, backend, gcs_client):
        blob = gcs_client.bucket.return_value.blob.return_value
        blob.delete.side_effect = Forbidden("denied")

        with pytest.raises(StorageError):
            await backend.delete_object("audio-hls", "song/abc/seg_00000.m4s")


class TestStorageFactory:
    def test_local(self, tmp_path):
        backend = get_storage_backend(Settings(STORAGE_BACKEND="local", LOCAL_STORAGE_PATH=str(tmp_path)))
        assert isinstance(backend, LocalStorageBackend)

    def test_s3(self):
        backend = get_storage_backend(Settings(STORAGE_BACKEND="s3", S3_ENDPOINT_URL="http://rustfs:9000"))
        assert isinstance(backend, S3StorageBackend)
        assert backend.endpoint_url == "http://rustfs:9000"

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_storage_backend(Settings(STORAGE_BACKEND="ftp"))
