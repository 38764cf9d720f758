from __future__ import annotations

import pytest
from conftest import JWT_SECRET, make_token

from lead_gateway.core.security import (
    SignatureError,
    decode_jwt_claims,
    mask_phone,
    parse_bearer,
    verify_shared_secret,
)


def test_decodes_valid_token() -> None:
    claims = decode_jwt_claims(make_token("user-9"), secret=JWT_SECRET)
    assert claims["sub"] == "user-9"


def test_rejects_bad_signature() -> None:
    with pytest.raises(SignatureError):
        decode_jwt_claims(make_token(secret="other"), secret=JWT_SECRET)


def test_rejects_expired_token() -> None:
    with pytest.raises(SignatureError):
        decode_jwt_claims(make_token(expires_in=-1), secret=JWT_SECRET)


def test_rejects_malformed_token() -> None:
    with pytest.raises(SignatureError):
        decode_jwt_claims("not-a-jwt", secret=JWT_SECRET)


def test_without_secret_only_decodes() -> None:
    claims = decode_jwt_claims(make_token(secret="anything"), secret=None)
    assert claims["sub"] == "user-1"


def test_shared_secret() -> None:
    verify_shared_secret("s3cret", "s3cret")
    with pytest.raises(SignatureError):
        verify_shared_secret("s3cret", "other")
    with pytest.raises(SignatureError):
        verify_shared_secret("s3cret", None)


def test_parse_bearer() -> None:
    assert parse_bearer("Bearer abc") == "abc"
    assert parse_bearer("bearer abc") == "abc"
    assert parse_bearer("Basic abc") is None
    assert parse_bearer(None) is None


def test_mask_phone_keeps_last_digits() -> None:
    masked = mask_phone("+5521988887777")
    assert masked is not None
    assert masked.endswith("777")
    assert "98888" not in masked
