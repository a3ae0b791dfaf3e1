import uuid

import pytest
from cms_api.models import Activity, Media, Post
from cms_authorization import RolePolicy

from .factories import PNG_BYTES, count_rows, post_body
from .tokens import ADMIN, AUTHOR_A, EDITOR, headers_for

pytestmark = pytest.mark.asyncio


def stored_files(storage) -> list:
    if not storage.root.exists():
        return []
    return [p for p in storage.root.rglob("*") if p.is_file()]


class TestUpload:
    async def test_upload_stores_object_and_record(self, upload, storage):
        response = await upload(
            "My Photo.png", altText="School gate", caption="Morning", user=AUTHOR_A
        )

        assert response.status_code == 201
        data = response.json()
        assert data["originalName"] == "My Photo.png"
        assert data["mimeType"] == "image/png"
        assert data["size"] == len(PNG_BYTES)
        assert data["altText"] == "School gate"
        assert data["uploadedBy"] == "author-a"
        assert data["bucket"] == "local"
        assert data["path"].startswith("uploads/")
        assert data["path"].endswith("-My-Photo.png")
        assert data["url"] == f"/media-files/{data['path']}"
        assert (storage.root / data["path"]).read_bytes() == PNG_BYTES

        activity = await count_rows(
            Activity, entity_id=uuid.UUID(data["id"]), action="create"
        )
        assert activity == 1

    async def test_disallowed_type_rejected_before_storage(self, upload, storage):
        response = await upload("script.sh", b"#!/bin/sh\n", "text/x-shellscript")

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid file type"
        assert stored_files(storage) == []
        assert await count_rows(Media) == 0

    async def test_oversize_rejected_before_storage(self, upload, storage):
        data = b"\x00" * (5 * 1024 * 1024 + 1)

        response = await upload("huge.png", data, "image/png")

        assert response.status_code == 400
        assert response.json() == {
            "error": "VALIDATION_ERROR",
            "message": "File too large (max 5MB)",
            "field": "file",
        }
        assert stored_files(storage) == []
        assert await count_rows(Media) == 0

    async def test_missing_file(self, client):
        response = await client.post(
            "/cms/media/upload", data={"altText": "nothing"}, headers=headers_for(ADMIN)
        )
        assert response.status_code == 400
        assert response.json()["message"] == "No file provided"

    async def test_storage_failure_is_upload_failed(self, app, upload, monkeypatch):
        def broken_put(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(type(app.storage), "put_bytes", broken_put)

        response = await upload()

        assert response.status_code == 500
        assert response.json() == {
            "error": "UPLOAD_FAILED",
            "message": "Failed to upload file",
        }
        assert await count_rows(Media) == 0
        assert await count_rows(Activity) == 0

    async def test_upload_requires_permission(self, client, upload, app):
        app.state.role_policy = RolePolicy({"author": ["posts:create"]})
        response = await upload(user=AUTHOR_A)
        assert response.status_code == 403


class TestUploadUrl:
    async def test_local_backend_points_at_upload_endpoint(self, client):
        response = await client.post(
            "/cms/media/upload-url",
            json={"filename": "report.pdf", "contentType": "application/pdf"},
            headers=headers_for(EDITOR),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["uploadUrl"] == "/cms/media/upload"
        assert data["method"] == "POST"
        assert data["key"].startswith("uploads/")
        assert data["key"].endswith("-report.pdf")

    async def test_rejects_disallowed_type(self, client):
        response = await client.post(
            "/cms/media/upload-url",
            json={"filename": "movie.mp4", "contentType": "video/mp4"},
            headers=headers_for(EDITOR),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid file type"


class TestMediaManagement:
    async def test_list_filters_by_mime_prefix_and_search(self, client, upload):
        await upload("photo.png", altText="Sports day")
        await upload("report.pdf", b"%PDF-1.4", "application/pdf")

        images = await client.get(
            "/cms/media", params={"mimeType": "image/"}, headers=headers_for(AUTHOR_A)
        )
        search = await client.get(
            "/cms/media", params={"search": "sports"}, headers=headers_for(AUTHOR_A)
        )

        assert [m["originalName"] for m in images.json()["items"]] == ["photo.png"]
        assert [m["originalName"] for m in search.json()["items"]] == ["photo.png"]

    async def test_update_alt_text(self, client, upload):
        media = (await upload()).json()

        response = await client.put(
            f"/cms/media/{media['id']}",
            json={"altText": "Updated alt", "caption": None},
            headers=headers_for(EDITOR),
        )

        assert response.status_code == 200
        assert response.json()["altText"] == "Updated alt"
        assert response.json()["caption"] is None

    async def test_delete_removes_object_and_featured_reference(
        self, client, upload, storage
    ):
        media = (await upload()).json()
        post = await client.post(
            "/cms/posts",
            json=post_body(featuredImageId=media["id"]),
            headers=headers_for(ADMIN),
        )
        assert post.json()["featuredImageId"] == media["id"]

        response = await client.delete(
            f"/cms/media/{media['id']}", headers=headers_for(EDITOR)
        )

        assert response.status_code == 200
        assert not (storage.root / media["path"]).exists()
        assert await count_rows(Media) == 0
        assert await count_rows(Post, Post.featured_image_id.is_not(None)) == 0

    async def test_get_missing_media(self, client):
        response = await client.get(
            "/cms/media/7f1c4b4e-8c4f-4d5e-9a59-1d2b3c4d5e6f", headers=headers_for(ADMIN)
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Media not found"
