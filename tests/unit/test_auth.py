"""Unit tests for token handling and request keying."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from jose import jwt
from starlette.requests import Request

from roombook.auth import create_access_token, decode_token, identity_from_claims
from roombook.config import get_settings
from roombook.models import RoleEnum
from roombook.rate_limit import identity_or_address
from roombook.schemas import Identity

settings = get_settings()


def make_request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/rooms",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "client": ("10.0.0.5", 52000),
    }
    return Request(scope)


class TestJWTTokens:
    """Test JWT token creation and decoding."""

    def test_create_access_token(self):
        identity = Identity(id=7, name="Alice", department="Engineering", role=RoleEnum.ADMIN)
        token = create_access_token(identity)

        decoded = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        assert decoded["sub"] == "7"
        assert decoded["name"] == "Alice"
        assert decoded["department"] == "Engineering"
        assert decoded["role"] == "ADMIN"
        assert decoded["exp"] > datetime.now(timezone.utc).timestamp()

    def test_decode_round_trip_to_identity(self):
        token = create_access_token(Identity(id=3, name="Bob"))

        identity = identity_from_claims(decode_token(token))

        assert identity.id == 3
        assert identity.name == "Bob"
        assert identity.department is None
        assert identity.role is RoleEnum.USER

    def test_decode_token_invalid(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_token("invalid.token.here")

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    def test_decode_token_expired(self):
        token = create_access_token(Identity(id=1), expires_delta=timedelta(hours=-1))

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401

    @pytest.mark.parametrize("claims", [{}, {"sub": "alice"}, {"sub": ""}])
    def test_identity_requires_numeric_subject(self, claims):
        with pytest.raises(HTTPException) as exc_info:
            identity_from_claims(claims)

        assert exc_info.value.status_code == 401


class TestRateLimitKey:
    """Requests are bucketed per user when a valid token is sent."""

    def test_keyed_by_token_subject(self):
        token = create_access_token(Identity(id=42, name="Carol"))

        assert identity_or_address(make_request({"Authorization": f"Bearer {token}"})) == "user:42"

    def test_falls_back_to_client_address(self):
        assert identity_or_address(make_request({})) == "10.0.0.5"

    def test_invalid_token_falls_back(self):
        request = make_request({"Authorization": "Bearer not-a-token"})

        assert identity_or_address(request) == "10.0.0.5"
