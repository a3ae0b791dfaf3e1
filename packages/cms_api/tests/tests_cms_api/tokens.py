import time
from typing import Any

import jwt

SECRET = "cms-api-test-secret-long-enough-for-hs256"

ADMIN = ("admin-1", "admin")
EDITOR = ("editor-1", "editor")
AUTHOR_A = ("author-a", "author")
AUTHOR_B = ("author-b", "author")


def make_token(sub: str, role: str | None = None, **claims: Any) -> str:
    payload: dict[str, Any] = {
        "sub": sub,
        "email": f"{sub}@example.com",
        "exp": int(time.time()) + 3600,
    }
    if role is not None:
        payload["role"] = role
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


def headers_for(user: tuple[str, str | None], **claims: Any) -> dict[str, str]:
    sub, role = user
    return {"Authorization": f"Bearer {make_token(sub, role, **claims)}"}
