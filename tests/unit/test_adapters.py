"""
Tests for the provider adapters.

Cloud SDKs are replaced by small fakes passed into the adapters'
constructors; the local adapter runs against a pytest tmp_path.
"""

import asyncio
import io
import time
from datetime import datetime, timezone

import pytest

from mediavault.core.storage.errors import (
    DeleteFailed,
    DownloadFailed,
    FileNotFound,
    UploadFailed,
    ValidationFailed,
)
from mediavault.core.storage.models import ProviderType
from mediavault.core.storage.url_cache import SignedUrlCache
from mediavault.infrastructure.storage.aws_s3 import S3Config, S3StorageAdapter
from mediavault.infrastructure.storage.azure_blob import AzureBlobConfig, AzureBlobStorageAdapter
from mediavault.infrastructure.storage.base import (
    ChunkedStream,
    derive_object_key,
    parse_media_metadata,
)
from mediavault.infrastructure.storage.google_cloud import (
    GoogleCloudConfig,
    GoogleCloudStorageAdapter,
)
from mediavault.infrastructure.storage.local import LocalFileStorageAdapter, LocalStorageConfig
from mediavault.infrastructure.storage.memory import InMemoryStorageAdapter


def run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestKeyDerivation:

    def test_destination_is_used_verbatim(self):
        assert derive_object_key("a.png", "custom/key.png") == "custom/key.png"

    def test_generated_key_is_millis_dash_filename(self):
        before = int(time.time() * 1000)
        key = derive_object_key("a.png")
        millis, name = key.split("-", 1)
        assert name == "a.png"
        assert int(millis) >= before

    def test_missing_filename_falls_back_to_upload(self):
        assert derive_object_key(None).endswith("-upload")


class TestMediaMetadataParsing:

    def test_values_are_parsed_case_insensitively(self):
        parsed = parse_media_metadata(
            {"Width": "640", "height": "480", "duration": "1.5", "encoding": "h264"}
        )
        assert parsed == {"width": 640, "height": 480, "duration": 1.5, "encoding": "h264"}

    def test_unparseable_values_become_none(self):
        parsed = parse_media_metadata({"width": "wide", "duration": ""})
        assert parsed["width"] is None
        assert parsed["duration"] is None

    def test_missing_metadata_is_all_none(self):
        assert set(parse_media_metadata(None).values()) == {None}


class TestChunkedStream:

    def test_reads_across_chunk_boundaries(self):
        stream = ChunkedStream([b"abc", b"", b"defg"])
        assert stream.read(2) == b"ab"
        assert stream.read() == b"cdefg"
        assert stream.read() == b""


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

class TestInMemoryAdapter:

    def test_upload_reports_metadata_and_url(self):
        adapter = InMemoryStorageAdapter("azure")
        result = run(adapter.upload(
            b"hello", "image/png", 5, filename="a.png", metadata={"width": 3, "height": 4},
        ))

        assert result.provider is ProviderType.AZURE
        assert result.storage_file_id.endswith("-a.png")
        assert result.storage_url.startswith("mock://azure/")
        meta = result.storage_metadata
        assert (meta.file_size, meta.mime_type, meta.width, meta.height) == (5, "image/png", 3, 4)
        assert meta.file_hash == "5d41402abc4b2a76b9719d911017c592"

    def test_empty_upload_is_rejected(self):
        with pytest.raises(ValidationFailed):
            run(InMemoryStorageAdapter().upload(b"", "image/png", 0))

    def test_download_returns_stored_bytes(self):
        adapter = InMemoryStorageAdapter()
        key = run(adapter.upload(b"bytes", "video/mp4", 5, destination="v.mp4")).storage_file_id
        assert run(adapter.download(key)).read() == b"bytes"

    def test_missing_object_operations_raise_file_not_found(self):
        adapter = InMemoryStorageAdapter()
        with pytest.raises(FileNotFound):
            run(adapter.delete("nope"))
        with pytest.raises(FileNotFound):
            run(adapter.download("nope"))
        with pytest.raises(FileNotFound):
            run(adapter.get_file_hash("nope"))
        assert run(adapter.exists("nope")) is False

    def test_list_files_filters_by_prefix_and_fields(self):
        adapter = InMemoryStorageAdapter()
        run(adapter.upload(b"1", "image/png", 1, destination="a/one.png"))
        run(adapter.upload(b"22", "image/png", 2, destination="b/two.png"))

        files = run(adapter.list_files(prefix="a/", fields=["file_name", "file_size"]))

        assert len(files) == 1
        assert files[0].storage_file_id == "a/one.png"
        assert files[0].file_name == "one.png"
        assert files[0].file_size == 1
        assert files[0].file_url is None

    def test_list_files_rejects_unknown_fields(self):
        with pytest.raises(ValidationFailed):
            run(InMemoryStorageAdapter().list_files(fields=["color"]))


class SlowAdapter(InMemoryStorageAdapter):
    def _put_object(self, key, data, content_type, metadata):
        time.sleep(0.3)
        return super()._put_object(key, data, content_type, metadata)


class BrokenAdapter(InMemoryStorageAdapter):
    def _open_stream(self, key):
        raise ConnectionError("socket closed")

    def _head_object(self, key):
        raise ConnectionError("socket closed")


class TestErrorClassification:

    def test_timeout_is_an_upload_failure(self):
        adapter = SlowAdapter(timeout_seconds=0.05)
        with pytest.raises(UploadFailed, match="timed out"):
            run(adapter.upload(b"x", "image/png", 1))

    def test_sdk_error_is_wrapped_in_operation_kind(self):
        adapter = BrokenAdapter()
        with pytest.raises(DownloadFailed) as excinfo:
            run(adapter.download("k"))
        assert excinfo.value.details["error"] == "socket closed"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_delete_check_failure_is_delete_failed(self):
        with pytest.raises(DeleteFailed):
            run(BrokenAdapter().delete("k"))


# ---------------------------------------------------------------------------
# Local filesystem adapter
# ---------------------------------------------------------------------------

@pytest.fixture
def local_adapter(tmp_path):
    return LocalFileStorageAdapter(LocalStorageConfig(
        root_dir=str(tmp_path / "store"),
        public_base_url="http://test/api/v1/storage/local",
        signing_secret="secret",
    ))


class TestLocalAdapter:

    def test_round_trip_with_sidecar_metadata(self, local_adapter, tmp_path):
        result = run(local_adapter.upload(
            b"pixels", "image/png", 6, destination="2024/a.png", metadata={"width": "8"},
        ))

        assert (tmp_path / "store" / "2024" / "a.png").read_bytes() == b"pixels"
        assert result.storage_metadata.width == 8
        assert run(local_adapter.get_file_hash("2024/a.png")) == result.storage_metadata.file_hash
        assert run(local_adapter.download("2024/a.png")).read() == b"pixels"

    def test_listing_skips_sidecars(self, local_adapter):
        run(local_adapter.upload(b"1", "image/png", 1, destination="x.png"))
        keys = [f.storage_file_id for f in run(local_adapter.list_files(fields=[]))]
        assert keys == ["x.png"]

    def test_signed_url_verifies_until_expiry(self, local_adapter):
        run(local_adapter.upload(b"1", "image/png", 1, destination="x.png"))
        local_adapter.url_cache.clear()

        url = run(local_adapter.get_public_url("x.png", expires_in=60))
        query = dict(part.split("=") for part in url.split("?", 1)[1].split("&"))
        expires, signature = int(query["expires"]), query["signature"]

        assert url.startswith("http://test/api/v1/storage/local/x.png?")
        assert local_adapter.verify_signature("x.png", expires, signature)
        assert not local_adapter.verify_signature("y.png", expires, signature)
        assert not local_adapter.verify_signature("x.png", expires, signature, now=expires + 1)

    def test_url_for_missing_file_is_not_found(self, local_adapter):
        with pytest.raises(FileNotFound):
            run(local_adapter.get_public_url("missing.png"))

    def test_keys_cannot_escape_root(self, local_adapter):
        with pytest.raises(ValidationFailed):
            run(local_adapter.upload(b"1", "image/png", 1, destination="../evil.png"))

    def test_delete_removes_object_and_sidecar(self, local_adapter, tmp_path):
        run(local_adapter.upload(b"1", "image/png", 1, destination="x.png"))
        run(local_adapter.delete("x.png"))
        assert list((tmp_path / "store").iterdir()) == []


# ---------------------------------------------------------------------------
# S3 adapter with a fake client
# ---------------------------------------------------------------------------

class FakeClientError(Exception):
    def __init__(self, code):
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class FakeS3Client:
    def __init__(self):
        self.objects = {}
        self.presign_calls = 0

    def put_object(self, Bucket, Key, Body, ContentType, Metadata):
        self.objects[Key] = (Body, ContentType, Metadata)
        return {"ETag": '"etag-' + Key + '"'}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise FakeClientError("404")
        body, content_type, metadata = self.objects[Key]
        return {
            "ContentLength": len(body),
            "ContentType": content_type,
            "ETag": '"etag-' + Key + '"',
            "Metadata": metadata,
            "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def generate_presigned_url(self, method, Params, ExpiresIn):
        self.presign_calls += 1
        return f"https://s3.test/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise FakeClientError("NoSuchKey")
        return {"Body": io.BytesIO(self.objects[Key][0])}


class TestS3Adapter:

    def _adapter(self):
        client = FakeS3Client()
        adapter = S3StorageAdapter(
            S3Config(bucket_name="bucket", region="us-east-1"),
            client=client,
        )
        return adapter, client

    def test_requires_bucket_and_region(self):
        with pytest.raises(ValidationFailed):
            S3StorageAdapter(S3Config(bucket_name="", region=""), client=FakeS3Client())

    def test_hash_is_etag_without_quotes(self):
        adapter, _ = self._adapter()
        result = run(adapter.upload(b"abc", "image/png", 3, destination="k"))
        assert result.storage_metadata.file_hash == "etag-k"
        assert result.storage_url.startswith("https://s3.test/k")

    def test_missing_key_is_file_not_found(self):
        adapter, _ = self._adapter()
        with pytest.raises(FileNotFound):
            run(adapter.download("absent"))
        assert run(adapter.exists("absent")) is False

    def test_url_cache_shields_provider(self):
        adapter, client = self._adapter()
        run(adapter.upload(b"abc", "image/png", 3, destination="k"))
        run(adapter.get_public_url("k"))
        run(adapter.get_public_url("k"))
        assert client.presign_calls == 1


# ---------------------------------------------------------------------------
# Google adapter with a fake client
# ---------------------------------------------------------------------------

class FakeBlob:
    def __init__(self, bucket, name):
        self._bucket = bucket
        self.name = name
        self.metadata = None
        self.md5_hash = None
        self.size = None
        self.content_type = None
        self.updated = None
        self.time_created = None

    def upload_from_string(self, data, content_type):
        self.size = len(data)
        self.content_type = content_type
        self.md5_hash = "md5=="
        self._bucket.blobs[self.name] = self

    def generate_signed_url(self, version, expiration, method):
        self._bucket.sign_calls += 1
        return f"https://signed.test/{self.name}"


class FakeBucket:
    def __init__(self):
        self.blobs = {}
        self.sign_calls = 0

    def blob(self, name):
        return self.blobs.get(name) or FakeBlob(self, name)

    def get_blob(self, name):
        return self.blobs.get(name)


class FakeGcsClient:
    def __init__(self):
        self.bucket_obj = FakeBucket()

    def bucket(self, name):
        return self.bucket_obj


class TestGoogleCloudAdapter:

    def _adapter(self):
        client = FakeGcsClient()
        adapter = GoogleCloudStorageAdapter(
            GoogleCloudConfig(bucket_name="media", credentials_path="/creds.json"),
            client=client,
        )
        return adapter, client

    def test_upload_records_static_public_url(self):
        adapter, client = self._adapter()
        result = run(adapter.upload(b"abc", "image/png", 3, destination="pic.png"))

        assert result.storage_url == "https://storage.googleapis.com/media/pic.png"
        assert result.storage_metadata.file_hash == "md5=="
        assert client.bucket_obj.sign_calls == 0

    def test_signing_checks_existence_first(self):
        adapter, client = self._adapter()
        with pytest.raises(FileNotFound):
            run(adapter.get_public_url("missing.png"))
        assert client.bucket_obj.sign_calls == 0

    def test_signed_url_for_existing_blob(self):
        adapter, _ = self._adapter()
        run(adapter.upload(b"abc", "image/png", 3, destination="pic.png"))
        assert run(adapter.get_public_url("pic.png")) == "https://signed.test/pic.png"


# ---------------------------------------------------------------------------
# Azure adapter with a fake service client
# ---------------------------------------------------------------------------

class FakeBlobProperties:
    def __init__(self, name, data, content_settings, metadata):
        self.name = name
        self.size = len(data)
        self.content_settings = content_settings
        self.etag = '"0x8DC"'
        self.metadata = metadata or {}
        self.last_modified = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDownloader:
    def __init__(self, data):
        self._data = data

    def chunks(self):
        return iter([self._data[:3], self._data[3:]])


class FakeBlobClient:
    def __init__(self, container, name):
        self._container = container
        self.name = name
        self.url = f"https://acct.blob.core.windows.net/media/{name}"

    def upload_blob(self, data, overwrite, content_settings, metadata):
        self._container.blobs[self.name] = FakeBlobProperties(
            self.name, data, content_settings, metadata
        ), data
        return {"etag": '"0x8DC"'}

    def _entry(self):
        from azure.core.exceptions import ResourceNotFoundError

        if self.name not in self._container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return self._container.blobs[self.name]

    def get_blob_properties(self):
        return self._entry()[0]

    def delete_blob(self):
        self._entry()
        del self._container.blobs[self.name]

    def download_blob(self):
        return FakeDownloader(self._entry()[1])


class FakeContainerClient:
    def __init__(self):
        self.blobs = {}

    def get_blob_client(self, name):
        return FakeBlobClient(self, name)

    def list_blobs(self, name_starts_with=None):
        return [
            props for props, _ in self.blobs.values()
            if not name_starts_with or props.name.startswith(name_starts_with)
        ]


class FakeCredential:
    account_key = "a2V5a2V5a2V5a2V5"


class FakeBlobServiceClient:
    account_name = "acct"
    credential = FakeCredential()

    def __init__(self):
        self.container = FakeContainerClient()

    def get_container_client(self, name):
        return self.container


class TestAzureBlobAdapter:

    def _adapter(self):
        client = FakeBlobServiceClient()
        adapter = AzureBlobStorageAdapter(
            AzureBlobConfig(connection_string="UseDevelopmentStorage=true", container_name="media"),
            service_client=client,
        )
        return adapter, client

    def test_requires_connection_string_and_container(self):
        with pytest.raises(ValidationFailed):
            AzureBlobStorageAdapter(
                AzureBlobConfig(connection_string="", container_name=""),
                service_client=FakeBlobServiceClient(),
            )

    def test_upload_hash_is_etag_without_quotes(self):
        adapter, _ = self._adapter()

        result = run(adapter.upload(
            b"abcdef", "video/mp4", 6, destination="clip.mp4", metadata={"Width": "1920"},
        ))

        assert result.storage_metadata.file_hash == "0x8DC"
        assert result.storage_metadata.width == 1920
        assert run(adapter.get_file_hash("clip.mp4")) == "0x8DC"

    def test_signed_url_is_read_only_sas(self):
        adapter, _ = self._adapter()
        result = run(adapter.upload(b"abcdef", "video/mp4", 6, destination="clip.mp4"))

        url = result.storage_url
        assert url.startswith("https://acct.blob.core.windows.net/media/clip.mp4?")
        assert "sp=r" in url
        assert "sig=" in url

    def test_missing_blob_is_file_not_found(self):
        adapter, _ = self._adapter()

        with pytest.raises(FileNotFound):
            run(adapter.download("absent.mp4"))
        with pytest.raises(FileNotFound):
            run(adapter.delete("absent.mp4"))
        with pytest.raises(FileNotFound):
            run(adapter.get_file_hash("absent.mp4"))
        assert run(adapter.exists("absent.mp4")) is False

    def test_download_joins_chunks(self):
        adapter, _ = self._adapter()
        run(adapter.upload(b"abcdef", "video/mp4", 6, destination="clip.mp4"))

        assert run(adapter.download("clip.mp4")).read() == b"abcdef"

    def test_list_reports_content_properties(self):
        adapter, _ = self._adapter()
        run(adapter.upload(b"abcdef", "video/mp4", 6, destination="a/clip.mp4"))
        run(adapter.upload(b"xy", "image/png", 2, destination="b/pic.png"))

        listed = run(adapter.list_files(prefix="a/", fields=["file_name", "file_size"]))

        assert [(f.file_name, f.file_size) for f in listed] == [("clip.mp4", 6)]
