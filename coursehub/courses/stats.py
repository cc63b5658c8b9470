"""
Derived statistics kept on course and enrollment documents.

Course.total_lessons / total_duration / enrollment_count / rating and
Enrollment.progress.percentage_complete are caches of the lessons, reviews
and enrollments collections. Every write that changes one of those
collections calls the matching recompute function below.

The hook-style recomputes (lesson save, review save/delete) are best effort:
a failure is logged and the primary write stands. The explicit recomputes
(update_course_stats, update_enrollment_progress) propagate errors to the
caller.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def compute_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, int(round_half_up(completed / total * 100)))


def apply_completion_transition(enrollment: dict, percentage: int, now: Optional[datetime] = None) -> dict:
    """
    Set percentage_complete and move status/completed_at across the 100% line.
    Returns the fields that changed, ready for a $set.
    """
    now = now or datetime.utcnow()
    updates = {"progress.percentage_complete": percentage}
    enrollment.setdefault("progress", {})["percentage_complete"] = percentage

    if percentage >= 100 and not enrollment.get("completed_at"):
        enrollment["status"] = "completed"
        enrollment["completed_at"] = now
        updates["status"] = "completed"
        updates["completed_at"] = now
    elif percentage < 100 and enrollment.get("status") == "completed":
        enrollment["status"] = "active"
        enrollment["completed_at"] = None
        updates["status"] = "active"
        updates["completed_at"] = None

    return updates

# ==================== COURSE CACHES ====================

async def _lesson_totals(db: AsyncIOMotorDatabase, course_id: str, session=None):
    lessons = await db.lessons.find(
        {"course_id": course_id}, {"duration": 1}, session=session
    ).to_list(length=None)
    total_duration = sum(lesson.get("duration") or 0 for lesson in lessons)
    return len(lessons), total_duration


async def _rating_stats(db: AsyncIOMotorDatabase, course_id: str):
    pipeline = [
        {"$match": {"course_id": course_id}},
        {"$group": {
            "_id": "$course_id",
            "count": {"$sum": 1},
            "average": {"$avg": "$rating"}
        }}
    ]
    stats = await db.reviews.aggregate(pipeline).to_list(length=1)
    if not stats:
        return {"average": 0, "count": 0}
    return {
        "average": round_half_up(stats[0]["average"], 1),
        "count": stats[0]["count"]
    }


async def recompute_course_lesson_stats(db: AsyncIOMotorDatabase, course_id: str) -> None:
    """After a lesson save: refresh total_lessons and total_duration"""
    try:
        total_lessons, total_duration = await _lesson_totals(db, course_id)
        await db.courses.update_one(
            {"course_id": course_id},
            {"$set": {"total_lessons": total_lessons, "total_duration": total_duration}}
        )
    except Exception:
        logger.exception("Lesson stats recompute failed for course %s", course_id)


async def calculate_average_rating(db: AsyncIOMotorDatabase, course_id: str) -> None:
    """After a review save or delete: refresh rating and the course's review id list"""
    try:
        rating = await _rating_stats(db, course_id)
        reviews = await db.reviews.find(
            {"course_id": course_id}, {"review_id": 1}
        ).to_list(length=None)
        await db.courses.update_one(
            {"course_id": course_id},
            {"$set": {
                "rating": rating,
                "reviews": [r["review_id"] for r in reviews]
            }}
        )
    except Exception:
        logger.exception("Rating recompute failed for course %s", course_id)


async def update_course_stats(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    """Full recompute of every course cache; used to repair drifted values"""
    enrollment_count = await db.enrollments.count_documents({"course_id": course_id})
    total_lessons, total_duration = await _lesson_totals(db, course_id)
    rating = await _rating_stats(db, course_id)

    stats = {
        "enrollment_count": enrollment_count,
        "total_lessons": total_lessons,
        "total_duration": total_duration,
        "rating": rating,
    }
    await db.courses.update_one({"course_id": course_id}, {"$set": stats})
    return stats

# ==================== ENROLLMENT PROGRESS ====================

async def update_enrollment_progress(db: AsyncIOMotorDatabase, enrollment: dict) -> dict:
    """Recompute percentage_complete against the course's current total_lessons and save it"""
    course = await db.courses.find_one({"course_id": enrollment["course_id"]}, {"total_lessons": 1})
    total_lessons = (course or {}).get("total_lessons", 0)

    completed = len(enrollment.get("progress", {}).get("completed_lessons", []))
    percentage = compute_percentage(completed, total_lessons)

    updates = apply_completion_transition(enrollment, percentage)
    await db.enrollments.update_one(
        {"enrollment_id": enrollment["enrollment_id"]},
        {"$set": updates}
    )
    return enrollment
