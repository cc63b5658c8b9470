"""
Achievement catalog
Static definitions, seeded into the achievements collection at startup
"""

import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from coursehub.courses.database import new_id

logger = logging.getLogger(__name__)

ACHIEVEMENTS = [
    # Login streaks
    {"code": "LOGIN_STREAK_3", "title": "On a Roll", "description": "Log in 3 days in a row", "icon": "🔥", "points": 10},
    {"code": "LOGIN_STREAK_7", "title": "Week Warrior", "description": "Log in 7 days in a row", "icon": "📅", "points": 25},
    {"code": "LOGIN_STREAK_14", "title": "Fortnight Focus", "description": "Log in 14 days in a row", "icon": "⚡", "points": 50},
    {"code": "LOGIN_STREAK_30", "title": "Habit Formed", "description": "Log in 30 days in a row", "icon": "🏆", "points": 100},

    # Enrollments
    {"code": "FIRST_ENROLLMENT", "title": "First Step", "description": "Enroll in your first course", "icon": "🎓", "points": 10},
    {"code": "ENROLLMENT_5", "title": "Eager Learner", "description": "Enroll in 5 courses", "icon": "📚", "points": 25},
    {"code": "ENROLLMENT_10", "title": "Knowledge Collector", "description": "Enroll in 10 courses", "icon": "🗂️", "points": 50},
    {"code": "EXPLORER", "title": "Explorer", "description": "Enroll in courses from 3 different categories", "icon": "🧭", "points": 25},
    {"code": "SPECIALIST", "title": "Specialist", "description": "Enroll in 3 courses from the same category", "icon": "🎯", "points": 25},

    # Lessons
    {"code": "FIRST_LESSON_COMPLETE", "title": "Getting Started", "description": "Complete your first lesson", "icon": "✅", "points": 10},
    {"code": "LESSONS_10", "title": "Steady Progress", "description": "Complete 10 lessons", "icon": "📈", "points": 25},
    {"code": "LESSONS_50", "title": "Lesson Marathon", "description": "Complete 50 lessons", "icon": "🏃", "points": 75},

    # Quizzes
    {"code": "PERFECT_QUIZ", "title": "Perfectionist", "description": "Score 100% on a quiz", "icon": "💯", "points": 20},
    {"code": "QUIZ_PASS_5", "title": "Quiz Master", "description": "Pass 5 different quizzes", "icon": "🧠", "points": 30},

    # Contributions
    {"code": "FIRST_REVIEW", "title": "Critic", "description": "Write your first course review", "icon": "✍️", "points": 10},
    {"code": "FIRST_ASSIGNMENT", "title": "Hands On", "description": "Submit your first assignment", "icon": "📝", "points": 15},

    # Completion
    {"code": "FIRST_COURSE_COMPLETE", "title": "Finisher", "description": "Complete your first course", "icon": "🏁", "points": 50},
    {"code": "COURSES_COMPLETED_3", "title": "Serial Finisher", "description": "Complete 3 courses", "icon": "🥇", "points": 100},
    {"code": "FIRST_CERTIFICATE", "title": "Certified", "description": "Earn your first certificate", "icon": "📜", "points": 50},
]

ACHIEVEMENT_CODES = {a["code"] for a in ACHIEVEMENTS}


async def seed_achievements(db: AsyncIOMotorDatabase) -> int:
    """Upsert every catalog entry by code; existing ids are never changed"""
    inserted = 0
    for definition in ACHIEVEMENTS:
        result = await db.achievements.update_one(
            {"code": definition["code"]},
            {
                "$set": definition,
                "$setOnInsert": {"achievement_id": new_id("ACH")}
            },
            upsert=True
        )
        if result.upserted_id is not None:
            inserted += 1

    logger.info("Achievement catalog seeded, %d new definitions", inserted)
    return inserted
