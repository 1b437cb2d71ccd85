from fastapi import APIRouter, Depends, Header
from core.config import settings
from schemas.auth_schemas import CreateAdminRequest, CreateAdminResponse
from services.auth_service import AuthService
from middleware.rate_limiter import rate_limit, setup_rate_limiter
from utils.deps import db_dependency
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/api/setup",
    tags=["setup"]
)


@router.post("/create-admin", response_model=CreateAdminResponse,
             dependencies=[Depends(rate_limit(setup_rate_limiter))])
async def create_admin(body: CreateAdminRequest, db: db_dependency,
                       x_setup_token: str | None = Header(default=None)):
    """
    One-time creation of the initial admin user.

    Requires the X-Setup-Token header to match SETUP_SECRET_TOKEN and only
    works while the users table is empty.
    """
    AuthService.check_setup_token(x_setup_token, settings.SETUP_SECRET_TOKEN)

    user = AuthService.create_initial_admin(body.username, body.password, db)

    return {
        "success": True,
        "message": "Admin user created successfully",
        "username": user.username
    }
