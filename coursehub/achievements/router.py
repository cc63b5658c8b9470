from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.courses.database import serialize_many
from coursehub.courses.dependencies import get_db, get_current_user

router = APIRouter(tags=["Achievements"])


@router.get("/achievements")
async def my_achievements(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    earned_ids = user.get("earned_achievements", [])
    earned = await db.achievements.find({"achievement_id": {"$in": earned_ids}}).to_list(length=None)
    return {
        "achievements": serialize_many(earned),
        "count": len(earned),
        "points": sum(a.get("points", 0) for a in earned),
        "login_streak": user.get("login_streak", 0)
    }


@router.get("/achievements/catalog")
async def achievement_catalog(db: AsyncIOMotorDatabase = Depends(get_db)):
    achievements = await db.achievements.find({}).sort("code", 1).to_list(length=None)
    return {"achievements": serialize_many(achievements), "count": len(achievements)}
