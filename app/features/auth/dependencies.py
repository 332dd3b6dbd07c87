from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from app.core.logging import logger
from app.core.security import decode_token
from app.dependencies import get_user_store
from app.features.auth.models import User, UserRole
from app.features.auth.store import UserStore
from app.shared.exceptions import CredentialsException, ForbiddenException


# HTTP Bearer security scheme
security = HTTPBearer()


async def resolve_token(token: Optional[str], users: UserStore) -> Optional[User]:
    """
    Resolve a JWT to an active user.

    Shared by the HTTP dependencies and the socket handshake.

    Returns:
        User, or None if the token or account is not valid
    """
    if not token:
        return None

    payload = decode_token(token)
    if payload is None:
        logger.warning("Failed to decode access token")
        return None

    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        logger.warning("Access token missing 'sub' field")
        return None

    user = await users.get(user_id)
    if user is None:
        logger.warning(f"Token subject not found: {user_id}")
        return None

    if not user.is_active:
        logger.warning(f"Inactive user attempted access: {user_id}")
        return None

    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    users: UserStore = Depends(get_user_store),
) -> User:
    """
    Dependency to get current authenticated user.

    Raises:
        CredentialsException: If credentials are invalid
    """
    user = await resolve_token(credentials.credentials, users)
    if user is None:
        raise CredentialsException("Invalid authentication credentials")
    return user


async def get_current_patient(
    current_user: User = Depends(get_current_user)
) -> User:
    """Dependency that only admits patients."""
    if current_user.role != UserRole.PATIENT:
        raise ForbiddenException("Patient access required")
    return current_user


async def get_chat_participant(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Dependency for chat routes: patients, or pharmacies an admin has verified.
    """
    if current_user.role == UserRole.PATIENT:
        return current_user
    if current_user.is_verified_pharmacy:
        return current_user
    if current_user.role == UserRole.PHARMACY:
        raise ForbiddenException("Pharmacy account is pending verification")
    raise ForbiddenException("Only patients and pharmacies can access conversations")
