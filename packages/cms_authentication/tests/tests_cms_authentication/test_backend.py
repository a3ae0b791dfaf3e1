import time
from unittest.mock import Mock

import jwt
import pytest
from cms_authentication import JWTAuthenticationBackend
from cms_core.config import CMSSettings
from cryptography.hazmat.primitives.asymmetric import rsa

from .tokens import SECRET, make_token

pytestmark = pytest.mark.asyncio


class TestJWTAuthenticationBackend:
    async def test_valid_hs256_token(self, backend):
        token = make_token(email="a@example.com", role="editor")
        result = await backend.authenticate(token)

        assert result.success is True
        assert result.claims is not None
        assert result.claims.subject == "user-1"
        assert result.claims.email == "a@example.com"
        assert result.claims.role == "editor"

    async def test_missing_role_is_none(self, backend):
        result = await backend.authenticate(make_token())
        assert result.success is True
        assert result.claims is not None
        assert result.claims.role is None

    async def test_empty_token(self, backend):
        result = await backend.authenticate("")
        assert result.success is False
        assert result.message == "Missing or invalid authorization header"

    async def test_malformed_token(self, backend):
        result = await backend.authenticate("not.a.jwt")
        assert result.success is False
        assert result.message == "Invalid or expired token"

    async def test_bad_signature(self, backend):
        token = make_token("another-secret-that-is-long-enough-for-hs256")
        result = await backend.authenticate(token)
        assert result.success is False
        assert "InvalidSignatureError" in result.errors[0]

    async def test_expired_token(self, backend):
        result = await backend.authenticate(make_token(expires_in=-60))
        assert result.success is False
        assert result.errors == ["Token has expired"]

    async def test_leeway_tolerates_clock_skew(self):
        backend = JWTAuthenticationBackend(secret=SECRET, leeway=120)
        result = await backend.authenticate(make_token(expires_in=-60))
        assert result.success is True

    async def test_missing_exp_is_rejected(self, backend):
        token = jwt.encode({"sub": "user-1"}, SECRET, algorithm="HS256")
        result = await backend.authenticate(token)
        assert result.success is False
        assert "exp" in result.errors[0]

    async def test_missing_sub_is_rejected(self, backend):
        token = jwt.encode(
            {"exp": int(time.time()) + 60}, SECRET, algorithm="HS256"
        )
        result = await backend.authenticate(token)
        assert result.success is False

    async def test_disallowed_algorithm(self):
        backend = JWTAuthenticationBackend(secret=SECRET, algorithms=["RS256"])
        result = await backend.authenticate(make_token())
        assert result.success is False
        assert "InvalidAlgorithmError" in result.errors[0]

    async def test_hmac_without_secret(self):
        backend = JWTAuthenticationBackend(algorithms=["HS256"])
        result = await backend.authenticate(make_token())
        assert result.success is False
        assert "InvalidKeyError" in result.errors[0]

    async def test_issuer_checked_when_configured(self):
        backend = JWTAuthenticationBackend(secret=SECRET, issuer="https://idp")
        good = await backend.authenticate(make_token(iss="https://idp"))
        bad = await backend.authenticate(make_token(iss="https://other"))
        assert good.success is True
        assert bad.success is False

    async def test_audience_checked_when_configured(self):
        backend = JWTAuthenticationBackend(secret=SECRET, audience="authenticated")
        good = await backend.authenticate(make_token(aud="authenticated"))
        bad = await backend.authenticate(make_token(aud="anon"))
        assert good.success is True
        assert bad.success is False

    async def test_audience_ignored_when_not_configured(self, backend):
        result = await backend.authenticate(make_token(aud="authenticated"))
        assert result.success is True

    async def test_dotted_role_claim(self):
        backend = JWTAuthenticationBackend(
            secret=SECRET, role_claim="app_metadata.role"
        )
        token = make_token(role="authenticated", app_metadata={"role": "admin"})
        result = await backend.authenticate(token)
        assert result.claims is not None
        assert result.claims.role == "admin"

    async def test_name_from_user_metadata(self, backend):
        token = make_token(user_metadata={"name": "Siti"})
        result = await backend.authenticate(token)
        assert result.claims is not None
        assert result.claims.name == "Siti"


class TestJWKSVerification:
    @pytest.fixture
    def rsa_key(self):
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)

    @pytest.fixture
    def jwks_client(self, rsa_key):
        client = Mock(spec=jwt.PyJWKClient)
        client.get_signing_key_from_jwt.return_value = Mock(
            key=rsa_key.public_key()
        )
        return client

    async def test_rs256_token_verified_with_jwks_key(self, rsa_key, jwks_client):
        backend = JWTAuthenticationBackend(
            algorithms=["RS256"], jwks_client=jwks_client
        )
        token = make_token(
            rsa_key, algorithm="RS256", headers={"kid": "key-1"}, role="author"
        )
        result = await backend.authenticate(token)

        assert result.success is True
        assert result.claims is not None
        assert result.claims.role == "author"
        jwks_client.get_signing_key_from_jwt.assert_called_once_with(token)

    async def test_rs256_signed_by_unknown_key(self, jwks_client):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        backend = JWTAuthenticationBackend(
            algorithms=["RS256"], jwks_client=jwks_client
        )
        result = await backend.authenticate(
            make_token(other, algorithm="RS256", headers={"kid": "key-1"})
        )
        assert result.success is False

    async def test_jwks_lookup_failure(self, rsa_key, jwks_client):
        jwks_client.get_signing_key_from_jwt.side_effect = jwt.PyJWKClientError(
            "Unable to find a signing key"
        )
        backend = JWTAuthenticationBackend(
            algorithms=["RS256"], jwks_client=jwks_client
        )
        result = await backend.authenticate(
            make_token(rsa_key, algorithm="RS256", headers={"kid": "missing"})
        )
        assert result.success is False
        assert "PyJWKClientError" in result.errors[0]

    async def test_asymmetric_without_jwks(self, rsa_key):
        backend = JWTAuthenticationBackend(secret=SECRET, algorithms=["RS256"])
        result = await backend.authenticate(make_token(rsa_key, algorithm="RS256"))
        assert result.success is False


class TestFromSettings:
    def test_builds_from_settings(self):
        settings = CMSSettings(
            JWT_SECRET=SECRET,
            JWT_ISSUER="https://idp",
            JWT_ROLE_CLAIM="app_metadata.role",
            JWKS_URL="https://idp/.well-known/jwks.json",
        )
        backend = JWTAuthenticationBackend.from_settings(settings)

        assert backend.secret == SECRET
        assert backend.issuer == "https://idp"
        assert backend.role_claim == "app_metadata.role"
        assert isinstance(backend.jwks_client, jwt.PyJWKClient)

    def test_blank_secret_is_none(self):
        backend = JWTAuthenticationBackend.from_settings(CMSSettings())
        assert backend.secret is None
        assert backend.jwks_client is None
