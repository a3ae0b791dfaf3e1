"""
Permission names and the built-in role table.
"""

POSTS_CREATE = "posts:create"
POSTS_EDIT = "posts:edit"
POSTS_DELETE = "posts:delete"
POSTS_PUBLISH = "posts:publish"
PAGES_CREATE = "pages:create"
PAGES_EDIT = "pages:edit"
PAGES_DELETE = "pages:delete"
CATEGORIES_MANAGE = "categories:manage"
MEDIA_UPLOAD = "media:upload"
MEDIA_DELETE = "media:delete"
GALLERIES_MANAGE = "galleries:manage"
USERS_MANAGE = "users:manage"
# Lifts the "published or own" visibility restriction on reads
CONTENT_READ_ALL = "content:read_all"
# Lifts the ownership restriction on updates
CONTENT_EDIT_ANY = "content:edit_any"

ALL_PERMISSIONS = frozenset(
    {
        POSTS_CREATE,
        POSTS_EDIT,
        POSTS_DELETE,
        POSTS_PUBLISH,
        PAGES_CREATE,
        PAGES_EDIT,
        PAGES_DELETE,
        CATEGORIES_MANAGE,
        MEDIA_UPLOAD,
        MEDIA_DELETE,
        GALLERIES_MANAGE,
        USERS_MANAGE,
        CONTENT_READ_ALL,
        CONTENT_EDIT_ANY,
    }
)

DEFAULT_ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": [
        POSTS_CREATE,
        POSTS_EDIT,
        POSTS_DELETE,
        POSTS_PUBLISH,
        PAGES_CREATE,
        PAGES_EDIT,
        PAGES_DELETE,
        CATEGORIES_MANAGE,
        MEDIA_UPLOAD,
        MEDIA_DELETE,
        GALLERIES_MANAGE,
        USERS_MANAGE,
        CONTENT_READ_ALL,
        CONTENT_EDIT_ANY,
    ],
    "editor": [
        POSTS_CREATE,
        POSTS_EDIT,
        POSTS_PUBLISH,
        PAGES_CREATE,
        PAGES_EDIT,
        MEDIA_UPLOAD,
        MEDIA_DELETE,
        GALLERIES_MANAGE,
        CONTENT_READ_ALL,
        CONTENT_EDIT_ANY,
    ],
    "author": [POSTS_CREATE, POSTS_EDIT, MEDIA_UPLOAD, GALLERIES_MANAGE],
}
