from datetime import timedelta

from jose import jwt

from core.config import get_settings
from core.security import create_access_token, decode_access_token


def test_round_trip_keeps_subject_and_role():
    token = create_access_token({"sub": "8d4f7a8e-0000-0000-0000-000000000001", "role": "admin"})
    payload = decode_access_token(token)
    assert payload["sub"] == "8d4f7a8e-0000-0000-0000-000000000001"
    assert payload["role"] == "admin"


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "u1", "role": "marketer"}, expires_delta=timedelta(seconds=-1))
    assert decode_access_token(token) is None


def test_wrong_secret_is_rejected():
    settings = get_settings()
    token = jwt.encode({"sub": "u1", "role": "marketer"}, "not-the-secret", algorithm=settings.jwt_algorithm)
    assert decode_access_token(token) is None


def test_token_without_role_is_rejected():
    assert decode_access_token(create_access_token({"sub": "u1"})) is None
