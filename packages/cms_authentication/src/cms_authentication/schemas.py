from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TokenClaims(BaseModel):
    """Identity extracted from a verified bearer token.

    Attributes:
        subject: The identity provider's user id (``sub``).
        email: The ``email`` claim, if present.
        role: The role claim, ``None`` when the token carries none.
        name: A display name taken from ``name`` or ``user_metadata.name``.
        payload: The full decoded payload.

    """

    model_config = ConfigDict(frozen=True)

    subject: str
    email: str | None = None
    role: str | None = None
    name: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict, repr=False)


class AuthenticationResult(BaseModel):
    """Result from a token backend.

    Attributes:
        success: Whether the token was verified.
        claims: Decoded claims when verification succeeded.
        message: Client-facing status message.
        errors: Error details for logging; never sent to the client.

    """

    success: bool
    claims: TokenClaims | None = None
    message: str = ""
    errors: list[str] = Field(default_factory=list)

    def __repr__(self) -> str:
        subject = self.claims.subject if self.claims else None
        return f"<AuthenticationResult success={self.success} subject={subject}>"
