from fastapi import Depends, Header, HTTPException
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.auth.auth_utils import verify_token, decode_token


def get_db_instance():
    """Get database from main module"""
    from coursehub.main import db
    return db

# ==================== DEPENDENCY FUNCTIONS ====================

async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()


async def get_current_user(
    payload: dict = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict:
    """Load the user named by the token's subject"""
    user = await db.users.find_one({"user_id": payload["sub"]})
    if not user:
        raise HTTPException(status_code=401, detail="User not registered")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account has been deactivated")
    return user


async def get_optional_user(
    authorization: str = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> Optional[dict]:
    """Current user for public endpoints; None for anonymous callers and unusable tokens"""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        payload = decode_token(authorization.split(" ")[1])
    except HTTPException:
        return None
    return await db.users.find_one({"user_id": payload.get("sub")})


def require_roles(*roles: str):
    """Dependency factory: current user must hold one of roles"""
    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Not allowed for your role")
        return user
    return checker
