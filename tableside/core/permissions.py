from typing import Optional
import hashlib
import logging

from fastapi import HTTPException, Depends, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..models.user import UserRole
from .cache import CacheKeys

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

async def resolve_staff_token(app, token: str) -> Optional[dict]:
    """Map a bearer token to an active staff profile, using Redis for both lookups"""
    cache = app.state.cache
    token_key = CacheKeys.TOKEN_USER.format(token_hash=hashlib.sha256(token.encode()).hexdigest())

    user_id = cache.get(token_key)
    if not user_id:
        try:
            response = await app.state.db.client.auth.get_user(token)
        except Exception as e:
            logger.info("Token rejected by auth provider: %s", e)
            return None
        if not response or not response.user:
            return None
        user_id = response.user.id
        cache.set(token_key, user_id, 300)

    profile_key = CacheKeys.USER_PROFILE.format(user_id=user_id)
    profile = cache.get(profile_key)
    if isinstance(profile, dict) and "id" in profile:
        return profile

    member = await app.state.staff.get(user_id)
    if member is None or not member.is_active:
        return None

    profile = member.model_dump(mode="json")
    cache.set(profile_key, profile, 300)
    return profile

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
):
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )

    user = await resolve_staff_token(request.app, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )
    return user

def require_roles(*roles: UserRole):
    allowed = {r.value for r in roles}

    async def checker(current_user: dict = Depends(get_current_user)):
        if str(current_user.get("role", "")).lower() not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return current_user

    return checker

require_staff = get_current_user
require_finance_staff = require_roles(UserRole.ADMIN, UserRole.MANAGER, UserRole.ACCOUNTANT)
require_admin = require_roles(UserRole.ADMIN, UserRole.MANAGER)
