from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.activity.service import get_activity_feed
from coursehub.courses.database import serialize_many
from coursehub.courses.dependencies import get_db, get_current_user

router = APIRouter(tags=["Activity"])


@router.get("/activity")
async def my_activity(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    activities = await get_activity_feed(db, user["user_id"], skip, limit)
    return {
        "activities": serialize_many(activities),
        "count": len(activities),
        "skip": skip,
        "limit": limit
    }
