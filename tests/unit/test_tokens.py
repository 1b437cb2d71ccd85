import pytest
from datetime import timedelta
from jose import jwt
from core.config import settings
from core.exceptions import TokenExpiredError, InvalidTokenError
from models.users import User
from services.token_service import TokenService


def make_user():
    return User(id=1, username="admin")


def test_access_token_creation():
    test_token = TokenService.generate_access_token(make_user())
    assert test_token

    payload = jwt.decode(test_token, key=settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload["id"] == 1
    assert payload["username"] == "admin"
    assert payload["exp"] - payload["iat"] == 15 * 60


def test_decode_access_token():
    token = TokenService.generate_access_token(make_user())

    payload = TokenService.decode_access_token(token)

    assert payload["id"] == 1
    assert payload["username"] == "admin"


def test_token_expiration():
    access_token = TokenService.generate_access_token(make_user(), expires_delta=timedelta(seconds=-10))

    with pytest.raises(TokenExpiredError) as exc_info:
        TokenService.decode_access_token(access_token)

    assert exc_info.value.code == "TOKEN_EXPIRED"
    assert exc_info.value.status_code == 401


def test_token_signed_with_other_secret():
    forged = jwt.encode({"id": 1, "username": "admin"}, "not-the-secret", algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        TokenService.decode_access_token(forged)


def test_malformed_token():
    with pytest.raises(InvalidTokenError) as exc_info:
        TokenService.decode_access_token("not-a-jwt")

    assert exc_info.value.code == "INVALID_TOKEN"
    assert exc_info.value.clear_cookies is True


def test_token_missing_claims():
    token = jwt.encode({"sub": "admin"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    with pytest.raises(InvalidTokenError):
        TokenService.decode_access_token(token)


def test_refresh_token_creation():
    first = TokenService.generate_refresh_token()
    second = TokenService.generate_refresh_token()

    # 64 random bytes, hex encoded
    assert len(first) == 128
    int(first, 16)
    assert first != second


def test_hash_token():
    digest = TokenService.hash_token("abc")

    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert TokenService.hash_token("abc") == digest
