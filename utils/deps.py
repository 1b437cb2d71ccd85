from core.database import SessionLocal
from core.kv import KeyValueStore
from typing import Annotated
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from core.exceptions import AuthError
from services.token_service import TokenService
from utils.cookies import ACCESS_COOKIE_NAME


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


def get_kv(request: Request) -> KeyValueStore:
    return request.app.state.kv

kv_dependency = Annotated[KeyValueStore, Depends(get_kv)]


def extract_access_token(request: Request) -> str | None:
    """
    Access token from the httpOnly cookie, falling back to the
    Authorization header (with or without the ``Bearer`` prefix).
    """
    token = request.cookies.get(ACCESS_COOKIE_NAME)
    if token:
        return token

    header = request.headers.get("Authorization")
    if not header:
        return None
    if header.startswith("Bearer "):
        return header[len("Bearer "):] or None
    return header


def get_current_user(request: Request) -> dict:
    token = extract_access_token(request)

    if not token:
        raise AuthError("No token provided", code="NO_TOKEN")

    # Raises TokenExpiredError / InvalidTokenError
    payload = TokenService.decode_access_token(token)

    request.state.user = payload
    return {"user_id": payload["id"], "username": payload["username"]}


user_dependency = Annotated[dict, Depends(get_current_user)]
