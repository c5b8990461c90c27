"""
Authentication endpoints.

Mounted at /api/v1/auth.
"""
import logging
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends

from .. import auth, schemas
from ..clients import directory_client
from ..config import ACCESS_TOKEN_EXPIRE_MINUTES
from ..exceptions import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/login", response_model=schemas.Token)
async def login(credentials: schemas.LoginRequest):
    """
    Login endpoint to obtain a JWT access token.

    The user record is fetched from the shared user directory and the
    password is verified locally.

    Args:
        credentials: Username and password

    Returns:
        Access token, its expiry, and the user's inventory roles and permissions

    Raises:
        UnauthorizedError: 401 if the credentials are invalid
        ForbiddenError: 403 if the account is disabled or locked out
        ExternalServiceError: 502 if the directory cannot be reached
    """
    user = await directory_client.get_user(credentials.username)
    if user is None or not auth.verify_password(credentials.password, user.get("password_hash") or ""):
        logger.warning(f"Failed login for {credentials.username}")
        raise UnauthorizedError("Invalid username or password")
    if not user.get("is_active", True):
        raise ForbiddenError("Account is disabled")
    if user.get("is_locked_out", False):
        raise ForbiddenError("Account is locked out")

    roles = auth.map_roles(user.get("roles") or [])
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = auth.create_access_token(
        user_id=str(user.get("user_id") or user.get("id")),
        roles=roles,
        username=user.get("username") or credentials.username,
        expires_delta=expires_delta,
    )
    logger.info(f"User {credentials.username} logged in")
    return schemas.Token(
        access_token=access_token,
        expires_at=datetime.utcnow() + expires_delta,
        roles=roles,
        permissions=auth.permissions_for_roles(roles),
    )


@router.get("/me", response_model=schemas.UserInfo)
def get_me(current_user: auth.CurrentUser = Depends(auth.get_current_user)):
    """
    Get the current authenticated user's information.

    Returns:
        User id, username, roles and permissions from the token
    """
    return schemas.UserInfo(
        user_id=current_user.id,
        username=current_user.username,
        roles=current_user.roles,
        permissions=current_user.permissions,
    )
