from datetime import datetime, timezone

import pytest
from botocore.stub import Stubber
from cms_api.storage import (
    LocalStorage,
    S3Storage,
    Storage,
    StorageError,
    build_object_key,
    sanitize_filename,
    storage_from_settings,
)


@pytest.fixture
def s3_storage() -> S3Storage:
    return S3Storage(
        endpoint="",
        region="us-east-1",
        bucket="cms-media",
        access_key_id="test-key",
        secret_access_key="test-secret",
        public_base_url="https://cdn.example.com",
    )


@pytest.fixture
def s3_stub(s3_storage):
    with Stubber(s3_storage.client) as stubber:
        yield stubber
        stubber.assert_no_pending_responses()


class TestObjectKeys:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("photo.png", "photo.png"),
            ("My Photo (1).jpg", "My-Photo-1-.jpg"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\me\\cv.pdf", "cv.pdf"),
            ("café.png", "cafe.png"),
            ("...", "file"),
        ],
    )
    def test_sanitize_filename(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_build_object_key(self):
        now = datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)

        key = build_object_key("Report 2026.pdf", now=now)

        assert key == f"uploads/2026/03/{int(now.timestamp() * 1000)}-Report-2026.pdf"


def test_storage_interface_is_abstract():
    with pytest.raises(TypeError, match="abstract"):
        Storage()


class TestLocalStorage:
    def test_put_exists_delete(self, tmp_path):
        storage = LocalStorage(root=tmp_path)

        storage.put_bytes("uploads/2026/03/a.txt", b"hello")

        assert storage.exists("uploads/2026/03/a.txt")
        assert (tmp_path / "uploads/2026/03/a.txt").read_bytes() == b"hello"

        storage.delete("uploads/2026/03/a.txt")
        storage.delete("uploads/2026/03/a.txt")
        assert not storage.exists("uploads/2026/03/a.txt")

    def test_rejects_keys_outside_root(self, tmp_path):
        storage = LocalStorage(root=tmp_path / "media")

        with pytest.raises(StorageError, match="escapes storage root"):
            storage.put_bytes("../outside.txt", b"nope")

    def test_url_and_no_presign(self, tmp_path):
        storage = LocalStorage(root=tmp_path, public_base_url="/media-files/")

        assert storage.url_for("uploads/a.png") == "/media-files/uploads/a.png"
        assert storage.presign_put("uploads/a.png", content_type="image/png") is None


class TestS3Storage:
    def test_put_bytes(self, s3_storage, s3_stub):
        s3_stub.add_response(
            "put_object",
            {},
            {
                "Bucket": "cms-media",
                "Key": "uploads/a.png",
                "Body": b"data",
                "ContentType": "image/png",
            },
        )

        s3_storage.put_bytes("uploads/a.png", b"data", content_type="image/png")

    def test_put_failure_is_storage_error(self, s3_storage, s3_stub):
        s3_stub.add_client_error("put_object", "AccessDenied", http_status_code=403)

        with pytest.raises(StorageError, match="Failed to store"):
            s3_storage.put_bytes("uploads/a.png", b"data")

    def test_delete_failure_is_storage_error(self, s3_storage, s3_stub):
        s3_stub.add_client_error("delete_object", "InternalError", http_status_code=500)

        with pytest.raises(StorageError, match="Failed to delete"):
            s3_storage.delete("uploads/a.png")

    def test_exists(self, s3_storage, s3_stub):
        s3_stub.add_response("head_object", {}, {"Bucket": "cms-media", "Key": "a.png"})
        s3_stub.add_client_error("head_object", "404", http_status_code=404)

        assert s3_storage.exists("a.png") is True
        assert s3_storage.exists("b.png") is False

    def test_presign_put_targets_key(self, s3_storage):
        url = s3_storage.presign_put("uploads/a.png", content_type="image/png")

        assert url is not None
        assert "cms-media" in url
        assert "uploads/a.png" in url

    def test_public_url(self, s3_storage):
        assert (
            s3_storage.url_for("uploads/a.png")
            == "https://cdn.example.com/uploads/a.png"
        )


def test_storage_from_settings(settings):
    local = storage_from_settings(settings)
    assert isinstance(local, LocalStorage)
    assert local.root.is_absolute()

    s3 = storage_from_settings(
        settings.model_copy(
            update={
                "STORAGE_BACKEND": "s3",
                "S3_BUCKET": " cms-media ",
                "S3_ENDPOINT": "account.r2.cloudflarestorage.com",
            }
        )
    )
    assert isinstance(s3, S3Storage)
    assert s3.bucket == "cms-media"
    assert s3.client.meta.endpoint_url == "https://account.r2.cloudflarestorage.com"
