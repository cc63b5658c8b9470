import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.courses.database import new_id

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    ENROLLMENT = "ENROLLMENT"
    LESSON_COMPLETE = "LESSON_COMPLETE"
    QUIZ_ATTEMPT = "QUIZ_ATTEMPT"
    REVIEW_SUBMITTED = "REVIEW_SUBMITTED"
    ASSIGNMENT_SUBMITTED = "ASSIGNMENT_SUBMITTED"
    CERTIFICATE_EARNED = "CERTIFICATE_EARNED"
    ACHIEVEMENT_EARNED = "ACHIEVEMENT_EARNED"


async def log_activity(
    db: AsyncIOMotorDatabase,
    user_id: str,
    activity_type: ActivityType,
    message: str,
    course_id: Optional[str] = None,
    lesson_id: Optional[str] = None,
    quiz_id: Optional[str] = None
) -> Optional[dict]:
    """Append a feed entry. A failed write is logged and never fails the caller."""
    activity = {
        "activity_id": new_id("ACT"),
        "user_id": user_id,
        "type": ActivityType(activity_type).value,
        "message": message,
        "course_id": course_id,
        "lesson_id": lesson_id,
        "quiz_id": quiz_id,
        "created_at": datetime.utcnow()
    }
    try:
        await db.activities.insert_one(activity)
        return activity
    except Exception:
        logger.exception("Could not record %s activity for user %s", activity["type"], user_id)
        return None


async def get_activity_feed(db: AsyncIOMotorDatabase, user_id: str, skip: int = 0, limit: int = 20):
    cursor = db.activities.find({"user_id": user_id}).sort("created_at", -1).skip(skip).limit(limit)
    return await cursor.to_list(length=limit)
