"""
FieldStock API Dependencies

Dependency injection for DB sessions, auth, hierarchy and event fan-out.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from pickups.hierarchy import HierarchyResolver, Role, SqlHierarchyResolver
from realtime.publisher import PickupEventPublisher, RedisPickupEventPublisher

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev master-admin must match seed_test_data.py
DEV_USER_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": DEV_USER_ID,
            "role": Role.MASTER_ADMIN.value,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


def get_hierarchy(db: AsyncSession = Depends(get_db)) -> HierarchyResolver:
    return SqlHierarchyResolver(db)


def get_publisher() -> PickupEventPublisher:
    return RedisPickupEventPublisher(settings.redis_url)
