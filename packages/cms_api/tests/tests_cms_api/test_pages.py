import pytest
from cms_api.models import Page
from cms_authorization.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PAGES_CREATE,
    PAGES_DELETE,
    PAGES_EDIT,
)

from .factories import count_rows, page_body
from .tokens import ADMIN, AUTHOR_A, AUTHOR_B, EDITOR, headers_for

pytestmark = pytest.mark.asyncio


@pytest.fixture
def settings(settings):
    """Authors may write pages here so page ownership can be exercised."""
    roles = {role: list(perms) for role, perms in DEFAULT_ROLE_PERMISSIONS.items()}
    roles["author"] += [PAGES_CREATE, PAGES_EDIT]
    return settings.model_copy(update={"ROLE_PERMISSIONS": roles})


@pytest.fixture
def create_page(client):
    async def _create(slug: str = "about-us", *, user=ADMIN, **overrides):
        response = await client.post(
            "/cms/pages", json=page_body(slug, **overrides), headers=headers_for(user)
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


class TestPageHierarchy:
    async def test_create_child_page(self, client, create_page):
        parent = await create_page("about-us")
        child = await create_page("our-history", parentId=parent["id"])

        assert child["parentId"] == parent["id"]

    async def test_unknown_parent_is_rejected(self, client):
        response = await client.post(
            "/cms/pages",
            json=page_body(parentId="7f1c4b4e-8c4f-4d5e-9a59-1d2b3c4d5e6f"),
            headers=headers_for(ADMIN),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PARENT"

    async def test_page_cannot_be_its_own_parent(self, client, create_page):
        page = await create_page()

        response = await client.put(
            f"/cms/pages/{page['id']}",
            json={"parentId": page["id"]},
            headers=headers_for(ADMIN),
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "INVALID_PARENT",
            "message": "A page cannot be its own parent",
        }

    async def test_page_cannot_move_under_descendant(self, client, create_page):
        root = await create_page("about-us")
        child = await create_page("our-history", parentId=root["id"])
        grandchild = await create_page("founders", parentId=child["id"])

        response = await client.put(
            f"/cms/pages/{root['id']}",
            json={"parentId": grandchild["id"]},
            headers=headers_for(ADMIN),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PARENT"

    async def test_parent_can_be_cleared(self, client, create_page):
        root = await create_page("about-us")
        child = await create_page("our-history", parentId=root["id"])

        response = await client.put(
            f"/cms/pages/{child['id']}", json={"parentId": None}, headers=headers_for(ADMIN)
        )

        assert response.status_code == 200
        assert response.json()["parentId"] is None

    async def test_list_root_pages_with_null_token(self, client, create_page):
        root = await create_page("about-us")
        await create_page("our-history", parentId=root["id"])

        roots = await client.get(
            "/cms/pages", params={"parentId": "null"}, headers=headers_for(ADMIN)
        )
        children = await client.get(
            "/cms/pages", params={"parentId": root["id"]}, headers=headers_for(ADMIN)
        )

        assert [p["slug"] for p in roots.json()["items"]] == ["about-us"]
        assert [p["slug"] for p in children.json()["items"]] == ["our-history"]

    async def test_malformed_parent_filter_is_a_validation_error(self, client):
        response = await client.get(
            "/cms/pages", params={"parentId": "not-a-uuid"}, headers=headers_for(ADMIN)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["field"] == "parent_id"

    async def test_deleting_parent_promotes_children(self, client, create_page):
        root = await create_page("about-us")
        child = await create_page("our-history", parentId=root["id"])

        deleted = await client.delete(f"/cms/pages/{root['id']}", headers=headers_for(ADMIN))
        assert deleted.status_code == 200

        response = await client.get(f"/cms/pages/{child['id']}", headers=headers_for(ADMIN))
        assert response.json()["parentId"] is None


class TestPageTree:
    async def test_tree_nests_children(self, client, create_page):
        root = await create_page("about-us", status="published")
        await create_page("our-history", parentId=root["id"], status="published")
        await create_page("contact", status="published")

        response = await client.get("/cms/pages/tree", headers=headers_for(ADMIN))

        tree = response.json()
        assert [n["slug"] for n in tree] == ["contact", "about-us"]
        assert [c["slug"] for c in tree[1]["children"]] == ["our-history"]
        assert tree[0]["children"] == []

    async def test_tree_honors_visibility_and_entity_type(self, client, create_page):
        await create_page("public-page", status="published", user=AUTHOR_A)
        await create_page("hidden-draft", user=AUTHOR_A)
        await create_page("school-page", status="published", entityType="school")

        response = await client.get(
            "/cms/pages/tree",
            params={"entityType": "yayasan"},
            headers=headers_for(AUTHOR_B),
        )

        assert [n["slug"] for n in response.json()] == ["public-page"]

    async def test_visible_child_of_hidden_parent_becomes_root(self, client, create_page):
        parent = await create_page("draft-parent", user=AUTHOR_A)
        await create_page(
            "public-child", parentId=parent["id"], status="published", user=AUTHOR_A
        )

        response = await client.get("/cms/pages/tree", headers=headers_for(AUTHOR_B))

        assert [n["slug"] for n in response.json()] == ["public-child"]


class TestPageAccess:
    async def test_author_edits_only_own_pages(self, client, create_page):
        page = await create_page(user=AUTHOR_A, status="published")

        other = await client.put(
            f"/cms/pages/{page['id']}",
            json={"title": "Rewritten title"},
            headers=headers_for(AUTHOR_B),
        )
        assert other.status_code == 403
        assert other.json()["message"] == "You can only edit your own pages"

        owner = await client.put(
            f"/cms/pages/{page['id']}",
            json={"title": "Rewritten title"},
            headers=headers_for(AUTHOR_A),
        )
        assert owner.status_code == 200
        assert owner.json()["title"] == "Rewritten title"

    async def test_get_by_slug(self, client, create_page):
        await create_page("about-us", status="published")
        response = await client.get("/cms/pages/slug/about-us", headers=headers_for(AUTHOR_B))
        assert response.status_code == 200
        assert response.json()["content"].startswith("Lorem ipsum")

    async def test_duplicate_slug(self, client, create_page):
        await create_page("about-us")
        response = await client.post(
            "/cms/pages", json=page_body("about-us"), headers=headers_for(ADMIN)
        )
        assert response.status_code == 409
        assert response.json()["message"] == "A page with this slug already exists"

    async def test_publish_toggle_requires_edit_permission(self, client, create_page):
        page = await create_page()

        first = await client.patch(
            f"/cms/pages/{page['id']}/publish", headers=headers_for(EDITOR)
        )
        second = await client.patch(
            f"/cms/pages/{page['id']}/publish", headers=headers_for(EDITOR)
        )

        assert first.json()["status"] == "published"
        assert second.json()["status"] == "draft"

    async def test_author_cannot_delete_pages(self, client, create_page):
        page = await create_page(user=AUTHOR_A)
        response = await client.delete(
            f"/cms/pages/{page['id']}", headers=headers_for(AUTHOR_A)
        )
        assert response.status_code == 403


class TestPageDeleteOwnership:
    @pytest.fixture
    def settings(self, settings):
        roles = dict(settings.ROLE_PERMISSIONS)
        roles["author"] = [*roles["author"], PAGES_DELETE]
        return settings.model_copy(update={"ROLE_PERMISSIONS": roles})

    async def test_author_deletes_only_own_pages(self, client, create_page):
        page = await create_page(user=AUTHOR_A, status="published")

        other = await client.delete(
            f"/cms/pages/{page['id']}", headers=headers_for(AUTHOR_B)
        )
        assert other.status_code == 403
        assert other.json()["message"] == "You can only delete your own pages"

        owner = await client.delete(
            f"/cms/pages/{page['id']}", headers=headers_for(AUTHOR_A)
        )
        assert owner.status_code == 200
        assert await count_rows(Page) == 0
