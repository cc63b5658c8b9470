"""
Achievement rule engine.

Each check_* function looks at one area of a user's history and grants the
achievements whose thresholds are met. Grants happen on the in-memory user
document (grant never writes); persist_granted_achievements saves them with
$addToSet so concurrent writes to the user can't drop an award.

Checks never raise. A failing check logs and grants nothing, so a broken
rule can't fail the enrollment, lesson completion or login that triggered it.
Routers schedule evaluate_achievements as a background task.
"""

import inspect
import logging
from collections import Counter
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.activity.service import ActivityType, log_activity
from coursehub.courses.database import get_user

logger = logging.getLogger(__name__)

LOGIN_STREAK_THRESHOLDS = [(3, "LOGIN_STREAK_3"), (7, "LOGIN_STREAK_7"), (14, "LOGIN_STREAK_14"), (30, "LOGIN_STREAK_30")]
ENROLLMENT_THRESHOLDS = [(1, "FIRST_ENROLLMENT"), (5, "ENROLLMENT_5"), (10, "ENROLLMENT_10")]
LESSON_THRESHOLDS = [(1, "FIRST_LESSON_COMPLETE"), (10, "LESSONS_10"), (50, "LESSONS_50")]
COMPLETION_THRESHOLDS = [(1, "FIRST_COURSE_COMPLETE"), (3, "COURSES_COMPLETED_3")]
CATEGORY_THRESHOLD = 3
QUIZ_PASS_THRESHOLD = 5


async def grant(db: AsyncIOMotorDatabase, user: dict, code: str) -> Optional[dict]:
    """
    Add the achievement to user["earned_achievements"] unless it is already there.
    Returns the achievement document when newly granted, otherwise None.
    """
    achievement = await db.achievements.find_one({"code": code})
    if not achievement:
        logger.warning("Achievement code %s not found in catalog", code)
        return None

    earned = user.setdefault("earned_achievements", [])
    if achievement["achievement_id"] in earned:
        return None

    earned.append(achievement["achievement_id"])
    logger.info("Achievement granted: user %s earned %s", user.get("user_id"), code)
    return achievement


async def _grant_thresholds(db, user, value, thresholds) -> List[dict]:
    granted = []
    for threshold, code in thresholds:
        if value >= threshold:
            achievement = await grant(db, user, code)
            if achievement:
                granted.append(achievement)
    return granted

# ==================== CHECKS ====================

async def check_login_streak_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        return await _grant_thresholds(db, user, user.get("login_streak") or 0, LOGIN_STREAK_THRESHOLDS)
    except Exception:
        logger.exception("Login streak check failed for user %s", user.get("user_id"))
        return []


async def check_enrollment_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        enrollments = await db.enrollments.find(
            {"student_id": user["user_id"]}, {"course_id": 1}
        ).to_list(length=None)
        granted = await _grant_thresholds(db, user, len(enrollments), ENROLLMENT_THRESHOLDS)

        course_ids = [e["course_id"] for e in enrollments]
        courses = await db.courses.find(
            {"course_id": {"$in": course_ids}}, {"category": 1}
        ).to_list(length=None)
        per_category = Counter(c.get("category") for c in courses if c.get("category"))

        if len(per_category) >= CATEGORY_THRESHOLD:
            achievement = await grant(db, user, "EXPLORER")
            if achievement:
                granted.append(achievement)
        if per_category and max(per_category.values()) >= CATEGORY_THRESHOLD:
            achievement = await grant(db, user, "SPECIALIST")
            if achievement:
                granted.append(achievement)
        return granted
    except Exception:
        logger.exception("Enrollment check failed for user %s", user.get("user_id"))
        return []


async def check_lesson_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        enrollments = await db.enrollments.find(
            {"student_id": user["user_id"]}, {"progress.completed_lessons": 1}
        ).to_list(length=None)
        total = sum(len(e.get("progress", {}).get("completed_lessons", [])) for e in enrollments)
        return await _grant_thresholds(db, user, total, LESSON_THRESHOLDS)
    except Exception:
        logger.exception("Lesson check failed for user %s", user.get("user_id"))
        return []


async def check_quiz_achievements(db: AsyncIOMotorDatabase, user: dict, percentage: float = 0) -> List[dict]:
    try:
        granted = []
        if percentage == 100:
            achievement = await grant(db, user, "PERFECT_QUIZ")
            if achievement:
                granted.append(achievement)

        enrollments = await db.enrollments.find(
            {"student_id": user["user_id"]}, {"quiz_attempts": 1}
        ).to_list(length=None)
        passed = {
            q["quiz_id"]
            for e in enrollments
            for q in e.get("quiz_attempts", [])
            if q.get("passed")
        }
        if len(passed) >= QUIZ_PASS_THRESHOLD:
            achievement = await grant(db, user, "QUIZ_PASS_5")
            if achievement:
                granted.append(achievement)
        return granted
    except Exception:
        logger.exception("Quiz check failed for user %s", user.get("user_id"))
        return []


async def check_review_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        count = await db.reviews.count_documents({"student_id": user["user_id"]})
        return await _grant_thresholds(db, user, count, [(1, "FIRST_REVIEW")])
    except Exception:
        logger.exception("Review check failed for user %s", user.get("user_id"))
        return []


async def check_assignment_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        enrollments = await db.enrollments.find(
            {"student_id": user["user_id"]}, {"assignments": 1}
        ).to_list(length=None)
        submitted = sum(
            1 for e in enrollments
            for a in e.get("assignments", [])
            if a.get("status") in ("submitted", "graded")
        )
        return await _grant_thresholds(db, user, submitted, [(1, "FIRST_ASSIGNMENT")])
    except Exception:
        logger.exception("Assignment check failed for user %s", user.get("user_id"))
        return []


async def check_course_completion_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        count = await db.enrollments.count_documents({"student_id": user["user_id"], "status": "completed"})
        return await _grant_thresholds(db, user, count, COMPLETION_THRESHOLDS)
    except Exception:
        logger.exception("Course completion check failed for user %s", user.get("user_id"))
        return []


async def check_certificate_achievements(db: AsyncIOMotorDatabase, user: dict) -> List[dict]:
    try:
        count = await db.certificates.count_documents({"student_id": user["user_id"]})
        return await _grant_thresholds(db, user, count, [(1, "FIRST_CERTIFICATE")])
    except Exception:
        logger.exception("Certificate check failed for user %s", user.get("user_id"))
        return []

# ==================== PERSISTENCE ====================

async def persist_granted_achievements(db: AsyncIOMotorDatabase, user_id: str, granted: List[dict]) -> None:
    if not granted:
        return

    ids = [a["achievement_id"] for a in granted]
    await db.users.update_one(
        {"user_id": user_id},
        {"$addToSet": {"earned_achievements": {"$each": ids}}}
    )
    for achievement in granted:
        await log_activity(
            db, user_id, ActivityType.ACHIEVEMENT_EARNED,
            f"You earned an achievement: {achievement['title']}!"
        )


async def evaluate_achievements(db: AsyncIOMotorDatabase, user_id: str, *checks, **event) -> List[dict]:
    """
    Run checks for one user and save whatever they grant.

    Keyword arguments are event details (e.g. percentage=100) handed to the
    checks that take a parameter of that name.
    """
    try:
        user = await get_user(db, user_id)
        if not user:
            logger.warning("Achievement evaluation skipped, user %s not found", user_id)
            return []

        granted = []
        for check in checks:
            params = inspect.signature(check).parameters
            kwargs = {k: v for k, v in event.items() if k in params}
            granted.extend(await check(db, user, **kwargs))

        await persist_granted_achievements(db, user_id, granted)
        return granted
    except Exception:
        logger.exception("Achievement evaluation failed for user %s", user_id)
        return []

# ==================== LOGIN STREAK ====================

def record_login(user: dict, now: Optional[datetime] = None) -> dict:
    """
    Update login_streak/last_login on the user by calendar-day delta.
    Same day: unchanged. Next day: +1. Longer gap or first login: 1.
    Returns the fields to $set.
    """
    now = now or datetime.utcnow()
    last_login = user.get("last_login")

    if last_login is None:
        streak = 1
    else:
        days = (now.date() - last_login.date()).days
        if days == 1:
            streak = (user.get("login_streak") or 0) + 1
        elif days > 1:
            streak = 1
        else:
            streak = user.get("login_streak") or 1

    user["login_streak"] = streak
    user["last_login"] = now
    return {"login_streak": streak, "last_login": now}
