"""
FastAPI dependencies. Injected into route handlers.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AuthenticatedUser, get_current_user, verify_cron_secret
from .database import get_db as _get_db
from ..models.user import User


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


async def get_user(
    authorization: str = Header(default=""),
) -> AuthenticatedUser:
    """
    Resolve authenticated user from Authorization header.
    Returns dev user if FF_USE_AUTH0=false.
    """
    try:
        return await get_current_user(authorization)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_subscriber(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Map the token subject onto a users row. 404 until the account is provisioned."""
    result = await db.execute(select(User).where(User.auth_subject == user.subject))
    record = result.scalar_one_or_none()
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return record


async def require_cron(
    authorization: str = Header(default=""),
) -> None:
    """Bearer CRON_SECRET check for scheduler-triggered endpoints."""
    try:
        verify_cron_secret(authorization)
    except PermissionError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
