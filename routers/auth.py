from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette import status
from utils.deps import db_dependency, user_dependency, extract_access_token
from schemas.auth_schemas import LoginRequest, LoginResponse, MessageResponse
from services.auth_service import AuthService
from services.token_service import TokenService
from core.exceptions import AuthError, InvalidTokenError
from utils.cookies import REFRESH_COOKIE_NAME, set_auth_cookies, clear_auth_cookies
from middleware.rate_limiter import rate_limit, login_rate_limiter, get_client_ip
from utils.logger import get_logger, log_auth_event

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/api/auth",
    tags=["auth"]
)


@router.post("/login", response_model=LoginResponse,
             dependencies=[Depends(rate_limit(login_rate_limiter))])
async def login(body: LoginRequest, request: Request, response: Response, db: db_dependency):
    """
    Authenticate and set the access and refresh cookies.
    """
    user = AuthService.authenticate_user(body.username, body.password, db)

    access_token, refresh_token = TokenService.generate_token_pair(db, user)
    set_auth_cookies(response, access_token, refresh_token)

    log_auth_event(logger, "login", user_id=user.id, username=user.username, client_ip=get_client_ip(request))

    return {"success": True, "user": {"id": user.id, "username": user.username}}


@router.post("/refresh", response_model=MessageResponse)
async def refresh(request: Request, response: Response, db: db_dependency):
    """
    Exchange the refresh cookie for a new token pair.
    The presented refresh token is revoked (single use).
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE_NAME)

    if not refresh_token:
        raise AuthError("No refresh token provided", code="NO_REFRESH_TOKEN")

    user_id = TokenService.validate_refresh_token(db, refresh_token)
    if user_id is None:
        log_auth_event(logger, "refresh", success=False, reason="INVALID_REFRESH_TOKEN")
        raise AuthError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN", clear_cookies=True)

    user = AuthService.get_user_by_id(db, user_id)
    if not user:
        raise AuthError("User not found", code="USER_NOT_FOUND", clear_cookies=True)

    # Rotate: the old token is dead before the new one exists. Only the
    # request that actually revoked it may issue a new pair.
    if TokenService.revoke_refresh_token(db, refresh_token) != 1:
        log_auth_event(logger, "refresh", success=False, user_id=user.id, reason="REFRESH_TOKEN_REUSED")
        raise AuthError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN", clear_cookies=True)

    access_token, new_refresh_token = TokenService.generate_token_pair(db, user)
    set_auth_cookies(response, access_token, new_refresh_token)

    log_auth_event(logger, "refresh", user_id=user.id)

    return {"success": True, "message": "Token refreshed successfully"}


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response, db: db_dependency):
    """
    Revoke the refresh cookie's token and clear both cookies.
    Always succeeds.
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE_NAME)

    if refresh_token:
        try:
            TokenService.revoke_refresh_token(db, refresh_token)
        except SQLAlchemyError:
            db.rollback()
            logger.error("Failed to revoke refresh token on logout", exc_info=True)

    clear_auth_cookies(response)

    log_auth_event(logger, "logout")

    return {"success": True, "message": "Logged out successfully"}


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(user: user_dependency, response: Response, db: db_dependency):
    """
    Revoke every refresh token of the current user (logout from all devices).
    """
    TokenService.revoke_all_user_tokens(db, user["user_id"])
    clear_auth_cookies(response)

    log_auth_event(logger, "logout_all", user_id=user["user_id"], username=user["username"])

    return {"success": True, "message": "Logged out from all devices"}


@router.get("/verify")
async def verify(request: Request):
    """
    Report whether the access token is valid, with its claims.
    """
    token = extract_access_token(request)

    if not token:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"valid": False, "error": "No token provided", "code": "NO_TOKEN"}
        )

    try:
        payload = TokenService.decode_access_token(token)
    except AuthError as exc:
        error_response = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"valid": False, "error": exc.message, "code": exc.code}
        )
        if isinstance(exc, InvalidTokenError):
            clear_auth_cookies(error_response)
        return error_response

    return {"valid": True, "user": payload}


@router.get("/me")
async def me(request: Request):
    """
    Current user from the access token.
    """
    token = extract_access_token(request)

    if not token:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"authenticated": False, "code": "NO_TOKEN"}
        )

    try:
        payload = TokenService.decode_access_token(token)
    except AuthError as exc:
        error_response = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"authenticated": False, "code": exc.code}
        )
        if isinstance(exc, InvalidTokenError):
            clear_auth_cookies(error_response)
        return error_response

    return {
        "authenticated": True,
        "user": {"id": payload["id"], "username": payload["username"]}
    }
