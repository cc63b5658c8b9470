import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
import httpx

from coursehub.achievements.service import (
    record_login, evaluate_achievements, check_login_streak_achievements
)
from coursehub.auth.auth_utils import decode_token
from coursehub.config import AUTH_SERVICE_URL, AUTH_TIMEOUT_SECONDS
from coursehub.courses.database import get_user
from coursehub.courses.dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def _new_user(user_id: str, profile: dict) -> dict:
    user = {
        "user_id": user_id,
        "name": profile.get("name", ""),
        "role": profile.get("role", "student"),
        "login_streak": 0,
        "last_login": None,
        "earned_achievements": [],
        "is_active": True,
        "created_at": datetime.utcnow()
    }
    if profile.get("email"):
        user["email"] = profile["email"]
    return user


@router.post("/auth/login")
async def login_proxy(
    request: Request,
    data: dict,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Proxy login to the identity provider, then update the login streak.

    Credentials and X-* headers are forwarded unchanged; the provider is the
    only authority on whether they are valid. Its tokens are returned as received.
    """
    forwarded_headers = {
        key: value
        for key, value in request.headers.items()
        if key.lower().startswith("x-")
    }

    async with httpx.AsyncClient(timeout=AUTH_TIMEOUT_SECONDS) as client:
        response = await client.post(AUTH_SERVICE_URL, json=data, headers=forwarded_headers)

    if response.status_code != 200:
        raise HTTPException(
            status_code=401,
            detail=response.json().get("detail", "Authentication failed")
        )

    body = response.json()
    payload = decode_token(body.get("access_token", ""))
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")

    user = await get_user(db, user_id)
    if not user:
        user = _new_user(user_id, body.get("user") or {})
        await db.users.insert_one(user)
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")

    updates = record_login(user)
    await db.users.update_one({"user_id": user_id}, {"$set": updates})
    logger.info("User %s logged in, streak %d", user_id, updates["login_streak"])

    background_tasks.add_task(evaluate_achievements, db, user_id, check_login_streak_achievements)

    return {**body, "login_streak": updates["login_streak"]}
