from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import List, Optional
import re
import uuid

from coursehub.config import PLACEHOLDER_ID_PREFIX

# ==================== IDS & SERIALIZATION ====================

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12].upper()}"


def is_persisted_id(value: Optional[str], prefix: str) -> bool:
    """True when value looks like an id this service generated (not absent, not a placeholder)"""
    if not value or value.startswith(PLACEHOLDER_ID_PREFIX):
        return False
    return bool(re.fullmatch(rf"{prefix}_[0-9A-F]{{12}}", value))


def serialize_mongo(doc: dict) -> dict:
    if doc and "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc

def serialize_many(docs: List[dict]) -> List[dict]:
    return [serialize_mongo(doc) for doc in docs]


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9 ]", "", title.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)
    # titles without letters or digits still need a unique slug
    return slug or f"course-{uuid.uuid4().hex[:8]}"

# ==================== USERS ====================

async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
    return await db.users.find_one({"user_id": user_id})

# ==================== COURSES ====================

async def get_course(db: AsyncIOMotorDatabase, course_id: str, session=None) -> Optional[dict]:
    return await db.courses.find_one({"course_id": course_id}, session=session)


def can_manage_course(course: dict, user: dict) -> bool:
    return user.get("role") == "admin" or course.get("instructor_id") == user.get("user_id")


async def get_course_with_lessons(db: AsyncIOMotorDatabase, course_id: str) -> Optional[dict]:
    """Course with every module's lesson ids replaced by the lesson documents, in module order"""
    course = await get_course(db, course_id)
    if not course:
        return None

    lessons = await db.lessons.find({"course_id": course_id}).to_list(length=None)
    by_id = {lesson["lesson_id"]: serialize_mongo(lesson) for lesson in lessons}

    for module in course.get("modules", []):
        module["lessons"] = [by_id[lid] for lid in module.get("lessons", []) if lid in by_id]
    return serialize_mongo(course)


async def list_courses(db: AsyncIOMotorDatabase, filters: dict, skip: int = 0, limit: int = 20) -> List[dict]:
    """List courses with filters"""
    query = {}
    if filters.get("category"):
        query["category"] = filters["category"]
    if filters.get("level"):
        query["level"] = filters["level"]
    if filters.get("instructor_id"):
        query["instructor_id"] = filters["instructor_id"]
    if filters.get("search"):
        query["title"] = {"$regex": re.escape(filters["search"]), "$options": "i"}
    if filters.get("status"):
        query["status"] = filters["status"]
    else:
        query["status"] = "published"

    cursor = db.courses.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return await cursor.to_list(length=limit)

# ==================== ENROLLMENTS ====================

def build_enrollment(student_id: str, course_id: str, enrollment_type: str) -> dict:
    now = datetime.utcnow()
    return {
        "enrollment_id": new_id("ENR"),
        "student_id": student_id,
        "course_id": course_id,
        "enrollment_type": enrollment_type,
        "status": "active",
        "progress": {
            "completed_lessons": [],
            "current_lesson": None,
            "percentage_complete": 0,
            "total_time_spent": 0
        },
        "quiz_attempts": [],
        "assignments": [],
        "certificate": {"issued": False, "certificate_id": None, "issued_at": None},
        "enrolled_at": now,
        "completed_at": None,
        "last_accessed_at": now
    }


async def get_enrollment(db: AsyncIOMotorDatabase, enrollment_id: str) -> Optional[dict]:
    return await db.enrollments.find_one({"enrollment_id": enrollment_id})


async def find_enrollment(db: AsyncIOMotorDatabase, course_id: str, student_id: str) -> Optional[dict]:
    return await db.enrollments.find_one({"course_id": course_id, "student_id": student_id})


async def get_user_enrollments(db: AsyncIOMotorDatabase, student_id: str) -> List[dict]:
    cursor = db.enrollments.find({"student_id": student_id}).sort("enrolled_at", -1)
    return await cursor.to_list(length=None)

# ==================== INDEXES ====================

async def create_course_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes, including the uniqueness rules the documents rely on"""
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index("email", unique=True, sparse=True)

    await db.courses.create_index("course_id", unique=True)
    await db.courses.create_index("slug", unique=True)
    await db.courses.create_index([("status", 1), ("category", 1)])
    await db.courses.create_index("instructor_id")

    await db.lessons.create_index("lesson_id", unique=True)
    await db.lessons.create_index([("course_id", 1), ("order", 1)])
    await db.lessons.create_index([("course_id", 1), ("module_id", 1)])

    await db.enrollments.create_index("enrollment_id", unique=True)
    await db.enrollments.create_index([("student_id", 1), ("course_id", 1)], unique=True)
    await db.enrollments.create_index("course_id")

    await db.reviews.create_index("review_id", unique=True)
    await db.reviews.create_index([("course_id", 1), ("student_id", 1)], unique=True)

    await db.quizzes.create_index("quiz_id", unique=True)
    await db.certificates.create_index("certificate_id", unique=True)
    await db.certificates.create_index("enrollment_id", unique=True)

    await db.achievements.create_index("code", unique=True)
    await db.activities.create_index([("user_id", 1), ("created_at", -1)])
