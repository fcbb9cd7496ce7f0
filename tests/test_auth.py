from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from reelqueue.auth import (
    extract_bearer_token,
    hash_password,
    issue_token,
    require_auth,
    verify_password,
    verify_token,
)
from reelqueue.config import AuthConfig
from reelqueue.errors import AuthError, InvalidCredential, Unauthenticated


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRequireAuth:
    """Tests for the authorization gate."""

    def test_valid_token_returns_claims(self, auth_config: AuthConfig) -> None:
        token = issue_token("u1", "alice", auth_config)

        claims = require_auth(_bearer(token), auth_config)

        assert claims.user_id == "u1"
        assert claims.username == "alice"
        assert claims.expires_at > datetime.now(timezone.utc)

    def test_missing_header_is_unauthenticated(self, auth_config: AuthConfig) -> None:
        with pytest.raises(Unauthenticated, match="no token provided"):
            require_auth({}, auth_config)

    def test_empty_header_is_unauthenticated(self, auth_config: AuthConfig) -> None:
        with pytest.raises(Unauthenticated):
            require_auth({"Authorization": ""}, auth_config)

    def test_basic_scheme_is_unauthenticated(self, auth_config: AuthConfig) -> None:
        """Test that only the Bearer scheme is accepted."""
        with pytest.raises(Unauthenticated, match="Invalid authorization header format"):
            require_auth({"Authorization": "Basic dXNlcjpwYXNz"}, auth_config)

    @pytest.mark.parametrize("value", ["Bearer", "Bearer a b", "Bearer  token", "bearer token"])
    def test_malformed_header_is_unauthenticated(self, auth_config: AuthConfig, value: str) -> None:
        with pytest.raises(Unauthenticated):
            require_auth({"Authorization": value}, auth_config)

    def test_header_lookup_is_case_insensitive(self, auth_config: AuthConfig) -> None:
        token = issue_token("u1", "alice", auth_config)

        assert require_auth({"authorization": f"Bearer {token}"}, auth_config).user_id == "u1"
        assert require_auth({"AUTHORIZATION": f"Bearer {token}"}, auth_config).user_id == "u1"

    def test_expired_token_is_invalid_credential(self, auth_config: AuthConfig) -> None:
        issued = datetime.now(timezone.utc) - timedelta(days=8)
        token = issue_token("u1", "alice", auth_config, now=issued)

        with pytest.raises(InvalidCredential, match="expired"):
            require_auth(_bearer(token), auth_config)

    def test_wrong_secret_is_invalid_credential(self, auth_config: AuthConfig) -> None:
        token = issue_token("u1", "alice", AuthConfig(secret="someone-elses-secret"))

        with pytest.raises(InvalidCredential):
            require_auth(_bearer(token), auth_config)

    def test_garbage_token_is_invalid_credential(self, auth_config: AuthConfig) -> None:
        with pytest.raises(InvalidCredential):
            require_auth(_bearer("not-a-jwt"), auth_config)

    def test_both_rejections_are_auth_errors(self) -> None:
        assert issubclass(Unauthenticated, AuthError)
        assert issubclass(InvalidCredential, AuthError)


class TestVerifyToken:
    """Tests for verify_token()."""

    def test_token_without_expiry_is_rejected(self, auth_config: AuthConfig) -> None:
        token = jwt.encode({"userId": "u1", "username": "alice"}, auth_config.secret, algorithm="HS256")

        with pytest.raises(InvalidCredential):
            verify_token(token, auth_config)

    def test_token_without_user_claims_is_rejected(self, auth_config: AuthConfig) -> None:
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode({"sub": "u1", "exp": expires}, auth_config.secret, algorithm="HS256")

        with pytest.raises(InvalidCredential, match="userId"):
            verify_token(token, auth_config)

    def test_expiry_follows_config(self) -> None:
        config = AuthConfig(secret="s", expires_in=timedelta(hours=2))
        issued = datetime(2030, 1, 1, tzinfo=timezone.utc)

        token = issue_token("u1", "alice", config, now=issued)
        decoded = jwt.decode(token, "s", algorithms=["HS256"], options={"verify_exp": False})

        assert decoded["exp"] - decoded["iat"] == 7200
        assert decoded["userId"] == "u1"


def test_extract_bearer_token() -> None:
    assert extract_bearer_token({"Authorization": "Bearer abc.def.ghi"}) == "abc.def.ghi"


def test_password_hashing() -> None:
    hashed = hash_password("hunter2")

    assert hashed != "hunter2"
    assert hashed.startswith("$2")
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)


def test_verify_password_with_non_bcrypt_value() -> None:
    assert verify_password("hunter2", "plain-text") is False
