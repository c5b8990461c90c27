"""
Authentication and authorization utilities for the Inventory service.

Issues and validates JWT tokens, maps Device Tracking roles onto inventory
roles and provides FastAPI dependencies that enforce permissions.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from .config import SECRET_KEY, ALGORITHM, JWT_ISSUER, JWT_AUDIENCE, ACCESS_TOKEN_EXPIRE_MINUTES
from .exceptions import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

# Directory hashes are PBKDF2; bcrypt is accepted for locally provisioned accounts
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

# Security scheme for JWT bearer tokens (query string and cookie are fallbacks)
security = HTTPBearer(auto_error=False)

TOKEN_QUERY_PARAM = "token"
TOKEN_COOKIE = "auth_token"

# Inventory roles and their rank
VIEWER = "InventoryViewer"
CLERK = "InventoryClerk"
MANAGER = "InventoryManager"
ADMIN = "InventoryAdmin"

ROLE_LEVELS: Dict[str, int] = {VIEWER: 1, CLERK: 2, MANAGER: 3, ADMIN: 4}

# Device Tracking role -> inventory role
ROLE_MAPPING: Dict[str, str] = {
    "DeviceTracking.Viewer": VIEWER,
    "DeviceTracking.Operator": CLERK,
    "DeviceTracking.Manager": MANAGER,
    "DeviceTracking.Admin": ADMIN,
    "DeviceTracking.SuperAdmin": ADMIN,
}

RESOURCES = ("items", "locations", "transactions", "suppliers")
ACTIONS = ("create", "read", "update", "delete")


def permission_name(resource: str, action: str) -> str:
    return f"inventory.{resource}.{action}"


APPROVE_TRANSACTIONS = permission_name("transactions", "approve")
REPORTS_VIEW = "inventory.reports.view"
REPORTS_EXPORT = "inventory.reports.export"
ADMIN_PERMISSIONS = ("inventory.admin.users", "inventory.admin.settings", "inventory.admin.audit")

ALL_PERMISSIONS: List[str] = (
    [permission_name(resource, action) for resource in RESOURCES for action in ACTIONS]
    + [APPROVE_TRANSACTIONS, REPORTS_VIEW, REPORTS_EXPORT]
    + list(ADMIN_PERMISSIONS)
)

ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    VIEWER: {permission_name(resource, "read") for resource in RESOURCES} | {REPORTS_VIEW},
    CLERK: {
        permission_name("items", "read"),
        permission_name("items", "update"),
        permission_name("transactions", "create"),
        permission_name("transactions", "read"),
        permission_name("transactions", "update"),
        APPROVE_TRANSACTIONS,
        permission_name("locations", "read"),
        permission_name("suppliers", "read"),
        REPORTS_VIEW,
    },
    MANAGER: {
        permission for permission in ALL_PERMISSIONS
        if not permission.endswith(".delete") and permission not in ADMIN_PERMISSIONS
    },
    ADMIN: set(ALL_PERMISSIONS),
}


class CurrentUser(BaseModel):
    """Current authenticated user information."""
    id: str
    username: Optional[str] = None
    roles: List[str]
    permissions: List[str]
    token: str

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    @property
    def display_name(self) -> str:
        return self.username or self.id


def map_roles(external_roles: Iterable[str]) -> List[str]:
    """
    Map Device Tracking roles to inventory roles.

    Args:
        external_roles: Roles from the user directory or token

    Returns:
        Inventory roles, de-duplicated in first-seen order; unknown roles pass through
    """
    mapped: List[str] = []
    for role in external_roles:
        inventory_role = ROLE_MAPPING.get(role, role)
        if inventory_role not in mapped:
            mapped.append(inventory_role)
    return mapped


def permissions_for_roles(roles: Iterable[str]) -> List[str]:
    permissions: Set[str] = set()
    for role in roles:
        permissions |= ROLE_PERMISSIONS.get(role, set())
    return sorted(permissions)


def highest_role_level(roles: Iterable[str]) -> int:
    return max((ROLE_LEVELS.get(role, 0) for role in roles), default=0)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        True if the password matches, False otherwise (including unknown hash formats)
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("Unrecognised password hash format")
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    user_id: str,
    roles: List[str],
    username: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: Subject of the token
        roles: Inventory roles to embed
        username: Display name (optional)
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user_id),
        "username": username,
        "roles": roles,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "exp": expire,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT (signature, expiry, issuer and audience; no leeway).

    Raises:
        UnauthorizedError: If the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"leeway": 0},
        )
    except ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except JWTError as e:
        logger.warning(f"JWT validation error: {e}")
        raise UnauthorizedError("Invalid token")


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header first, then the ?token= query parameter, then the auth cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials
    token = request.query_params.get(TOKEN_QUERY_PARAM)
    if token:
        return token
    return request.cookies.get(TOKEN_COOKIE)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        request: Incoming request (query/cookie token fallbacks)
        credentials: HTTP Authorization credentials (injected)

    Returns:
        Current authenticated user information

    Raises:
        UnauthorizedError: 401 if the token is missing or invalid
    """
    token = extract_token(request, credentials)
    if not token:
        raise UnauthorizedError()

    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")

    roles = map_roles(payload.get("roles") or [])
    user = CurrentUser(
        id=user_id,
        username=payload.get("username"),
        roles=roles,
        permissions=permissions_for_roles(roles),
        token=token,
    )
    request.state.user_id = user.id
    return user


def require_permission(permission: str):
    """
    Build a dependency that requires a specific permission.

    Args:
        permission: Permission string, e.g. "inventory.items.create"

    Returns:
        FastAPI dependency returning the current user
    """
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not current_user.has_permission(permission):
            logger.warning(f"User {current_user.id} denied {permission}")
            raise ForbiddenError(f"Permission '{permission}' is required")
        return current_user
    return dependency


def require_role(minimum_role: str):
    """
    Build a dependency that requires at least the given role level.

    Args:
        minimum_role: One of ROLE_LEVELS

    Returns:
        FastAPI dependency returning the current user
    """
    required_level = ROLE_LEVELS[minimum_role]

    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if highest_role_level(current_user.roles) < required_level:
            raise ForbiddenError(f"Role '{minimum_role}' or higher is required")
        return current_user
    return dependency
