import pytest
from cms_authentication import JWTAuthenticationBackend

from .tokens import SECRET


@pytest.fixture
def backend() -> JWTAuthenticationBackend:
    return JWTAuthenticationBackend(secret=SECRET, algorithms=["HS256", "RS256"])
