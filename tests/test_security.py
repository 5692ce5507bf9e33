from datetime import timedelta

import pytest

from loan_review.core.security import create_access_token, decode_token


def test_access_token_round_trip(patch_jwt_keys):
    token = create_access_token("user-xyz")

    decoded = decode_token(token, expected_type="access")

    assert decoded["sub"] == "user-xyz"
    assert decoded["type"] == "access"
    assert "exp" in decoded


def test_expired_token_is_rejected(patch_jwt_keys):
    token = create_access_token("user-xyz", expires_delta=timedelta(minutes=-5))
    with pytest.raises(ValueError, match="Invalid token"):
        decode_token(token)


def test_wrong_token_type_is_rejected(patch_jwt_keys):
    token = create_access_token("user-xyz")
    with pytest.raises(ValueError, match="Unexpected token type"):
        decode_token(token, expected_type="refresh")


def test_garbage_token_is_rejected(patch_jwt_keys):
    with pytest.raises(ValueError):
        decode_token("not-a-jwt")
