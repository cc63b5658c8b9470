"""
Course edit coordinator.

A course edit arrives as a complete module/lesson tree. The tree is
reconciled against the lessons already stored for the course: new lessons
are created, known lessons updated, lessons missing from the tree deleted,
and the course's module list replaced. All of it runs in one MongoDB
transaction. Enrollment progress is repaired after commit by
sync_course_enrollments, which is idempotent and can be re-run at any time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo import UpdateOne

from coursehub.config import PLACEHOLDER_ID_PREFIX
from coursehub.courses.database import (
    new_id, is_persisted_id, slugify, get_course, can_manage_course
)
from coursehub.courses.models import CourseCreate, CourseUpdate, LessonCreate, LessonType, parse_lesson_content
from coursehub.courses.stats import (
    compute_percentage, apply_completion_transition, recompute_course_lesson_stats
)

logger = logging.getLogger(__name__)


class CourseEditError(ValueError):
    """Submitted course structure can't be applied"""


@dataclass
class CoursePlan:
    modules: List[dict] = field(default_factory=list)
    lessons_to_create: List[dict] = field(default_factory=list)
    lessons_to_update: List[UpdateOne] = field(default_factory=list)
    lessons_to_delete: List[str] = field(default_factory=list)


def _field(data, name, default=None):
    if isinstance(data, dict):
        return data.get(name, default)
    return getattr(data, name, default)


def _lesson_fields(lesson, position: str, lesson_index: int, module_id: str) -> dict:
    title = _field(lesson, "title")
    lesson_type = _field(lesson, "type")
    if not title or not lesson_type:
        raise CourseEditError(f"Lesson validation failed: missing title or type for lesson at {position}")

    try:
        lesson_type = LessonType(lesson_type).value
        content = parse_lesson_content(lesson_type, _field(lesson, "content"))
    except (ValueError, ValidationError) as e:
        raise CourseEditError(f"Invalid content for lesson at {position}: {e}")

    order = _field(lesson, "order")
    return {
        "module_id": module_id,
        "title": title,
        "description": _field(lesson, "description"),
        "type": lesson_type,
        "order": order if order is not None else lesson_index,
        "content": content,
        "duration": _field(lesson, "duration") or 0,
        "is_preview": bool(_field(lesson, "is_preview", False)),
        "is_free": bool(_field(lesson, "is_free", False)),
    }


def plan_course_structure(
    course_id: str,
    modules_data: Iterable,
    existing_lesson_ids: Iterable[str],
    instructor_id: str,
    now: Optional[datetime] = None
) -> CoursePlan:
    """
    Work out every write needed to turn the stored course into modules_data.

    Modules and lessons with a missing or placeholder id are new and get a
    fresh id. Lessons with a stored id are updated in place (and may move
    between modules). Stored lessons that no longer appear are deleted.
    Raises CourseEditError on the first lesson that can't be applied;
    nothing is written in that case.
    """
    now = now or datetime.utcnow()
    existing = set(existing_lesson_ids)
    seen = set()
    seen_modules = set()
    plan = CoursePlan()

    for mod_index, module in enumerate(modules_data or []):
        module_id = _field(module, "module_id")
        if not is_persisted_id(module_id, "MOD"):
            module_id = new_id("MOD")
        elif module_id in seen_modules:
            raise CourseEditError(f"Module {module_id} appears more than once")
        seen_modules.add(module_id)

        lesson_ids = []
        for les_index, lesson in enumerate(_field(module, "lessons") or []):
            position = f"module index {mod_index}, lesson index {les_index}"
            lesson_id = _field(lesson, "lesson_id")
            fields = _lesson_fields(lesson, position, les_index, module_id)

            if is_persisted_id(lesson_id, "LES"):
                if lesson_id not in existing:
                    raise CourseEditError(f"Lesson {lesson_id} at {position} does not belong to this course")
                if lesson_id in seen:
                    raise CourseEditError(f"Lesson {lesson_id} appears more than once")
                plan.lessons_to_update.append(UpdateOne(
                    {"lesson_id": lesson_id, "course_id": course_id},
                    {"$set": {**fields, "updated_at": now}}
                ))
            elif lesson_id and not lesson_id.startswith(PLACEHOLDER_ID_PREFIX):
                raise CourseEditError(f"Invalid lesson id format for lesson at {position}")
            else:
                lesson_id = new_id("LES")
                plan.lessons_to_create.append({
                    "lesson_id": lesson_id,
                    "course_id": course_id,
                    "instructor_id": instructor_id,
                    **fields,
                    "status": "published",
                    "created_at": now,
                    "updated_at": now
                })

            seen.add(lesson_id)
            lesson_ids.append(lesson_id)

        order = _field(module, "order")
        plan.modules.append({
            "module_id": module_id,
            "title": _field(module, "title"),
            "description": _field(module, "description"),
            "order": order if order is not None else mod_index,
            "lessons": lesson_ids
        })

    plan.lessons_to_delete = sorted(existing - seen)
    return plan


def _basic_info(payload, now: datetime) -> Dict:
    data = payload.model_dump(exclude_unset=True, exclude={"modules"}, mode="json")
    if "certificate_enabled" in data:
        data["certificate.enabled"] = data.pop("certificate_enabled")
    if data.get("title"):
        data["slug"] = slugify(data["title"])
    data["updated_at"] = now
    return data

# ==================== TRANSACTIONS ====================

async def create_course_with_structure(db: AsyncIOMotorDatabase, payload: CourseCreate, user: dict) -> dict:
    """Insert a new draft course together with its lessons"""
    now = datetime.utcnow()
    course_id = new_id("COURSE")
    plan = plan_course_structure(course_id, payload.modules, [], user["user_id"], now)

    course = payload.model_dump(exclude={"modules", "certificate_enabled"}, mode="json")
    course.update({
        "course_id": course_id,
        "slug": slugify(payload.title),
        "instructor_id": user["user_id"],
        "status": "draft",
        "modules": plan.modules,
        "certificate": {"enabled": payload.certificate_enabled},
        "total_lessons": len(plan.lessons_to_create),
        "total_duration": sum(l["duration"] for l in plan.lessons_to_create),
        "enrollment_count": 0,
        "rating": {"average": 0, "count": 0},
        "reviews": [],
        "published_at": None,
        "created_at": now,
        "updated_at": now
    })

    async with await db.client.start_session() as session:
        async with session.start_transaction():
            if plan.lessons_to_create:
                await db.lessons.insert_many(plan.lessons_to_create, session=session)
            await db.courses.insert_one(course, session=session)

    logger.info("Course %s created with %d lessons", course_id, len(plan.lessons_to_create))
    return course


async def update_course_structure(
    db: AsyncIOMotorDatabase,
    course_id: str,
    payload: CourseUpdate,
    user: dict
) -> dict:
    """
    Apply basic info and, when modules are sent, reconcile the lesson tree.
    Every write happens inside one transaction; any error aborts all of them.
    Returns the saved course and the ids of the deleted lessons.
    """
    now = datetime.utcnow()

    async with await db.client.start_session() as session:
        async with session.start_transaction():
            course = await get_course(db, course_id, session=session)
            if not course:
                raise HTTPException(404, "Course not found")
            if not can_manage_course(course, user):
                raise HTTPException(403, "Not authorized to update this course")

            updates = _basic_info(payload, now)
            deleted = []

            if payload.modules is not None:
                existing = [lid for m in course.get("modules", []) for lid in m.get("lessons", [])]
                plan = plan_course_structure(course_id, payload.modules, existing, course["instructor_id"], now)
                deleted = plan.lessons_to_delete

                if deleted:
                    await db.lessons.delete_many(
                        {"lesson_id": {"$in": deleted}, "course_id": course_id}, session=session
                    )
                    await db.enrollments.update_many(
                        {"course_id": course_id},
                        {"$pull": {"progress.completed_lessons": {"lesson_id": {"$in": deleted}}}},
                        session=session
                    )
                if plan.lessons_to_create:
                    await db.lessons.insert_many(plan.lessons_to_create, session=session)
                if plan.lessons_to_update:
                    await db.lessons.bulk_write(plan.lessons_to_update, session=session)

                lessons = await db.lessons.find(
                    {"course_id": course_id}, {"duration": 1}, session=session
                ).to_list(length=None)
                updates["modules"] = plan.modules
                updates["total_lessons"] = len(lessons)
                updates["total_duration"] = sum(l.get("duration") or 0 for l in lessons)

            await db.courses.update_one({"course_id": course_id}, {"$set": updates}, session=session)

    logger.info("Course %s updated, %d lessons removed", course_id, len(deleted))
    course = await get_course(db, course_id)
    return {"course": course, "deleted_lessons": deleted}


async def sync_course_enrollments(db: AsyncIOMotorDatabase, course_id: str) -> int:
    """
    Bring every enrollment of a course in line with the lessons that exist now:
    drop completions of deleted lessons, recompute the percentage and move
    status across the 100% line in either direction. Safe to run repeatedly.
    Returns the number of enrollments written.
    """
    try:
        lessons = await db.lessons.find({"course_id": course_id}, {"lesson_id": 1}).to_list(length=None)
        lesson_ids = {l["lesson_id"] for l in lessons}
        total = len(lesson_ids)

        operations = []
        enrollments = await db.enrollments.find({"course_id": course_id}).to_list(length=None)
        for enrollment in enrollments:
            completed = [
                c for c in enrollment.get("progress", {}).get("completed_lessons", [])
                if c.get("lesson_id") in lesson_ids
            ]
            enrollment.setdefault("progress", {})["completed_lessons"] = completed
            updates = apply_completion_transition(enrollment, compute_percentage(len(completed), total))
            updates["progress.completed_lessons"] = completed
            operations.append(UpdateOne({"enrollment_id": enrollment["enrollment_id"]}, {"$set": updates}))

        if operations:
            await db.enrollments.bulk_write(operations)
        logger.info("Synced %d enrollments for course %s", len(operations), course_id)
        return len(operations)
    except Exception:
        logger.exception("Enrollment sync failed for course %s", course_id)
        return 0

# ==================== SINGLE-ENTITY OPERATIONS ====================

async def add_lesson(db: AsyncIOMotorDatabase, payload: LessonCreate, user: dict) -> dict:
    """Append one lesson to an existing module of the course"""
    course = await get_course(db, payload.course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to add lessons to this course")

    modules = course.get("modules", [])
    module = next((m for m in modules if m.get("module_id") == payload.module_id), None)
    if module is None:
        raise HTTPException(404, "Module not found in this course")

    position = f"module {payload.module_id}, lesson index {len(module.get('lessons', []))}"
    fields = _lesson_fields(payload, position, len(module.get("lessons", [])), payload.module_id)

    now = datetime.utcnow()
    lesson = {
        "lesson_id": new_id("LES"),
        "course_id": payload.course_id,
        "instructor_id": course["instructor_id"],
        **fields,
        "status": "published",
        "created_at": now,
        "updated_at": now
    }
    await db.lessons.insert_one(lesson)

    module.setdefault("lessons", []).append(lesson["lesson_id"])
    await db.courses.update_one(
        {"course_id": payload.course_id},
        {"$set": {"modules": modules, "updated_at": now}}
    )
    await recompute_course_lesson_stats(db, payload.course_id)
    await sync_course_enrollments(db, payload.course_id)

    logger.info("Lesson %s added to course %s", lesson["lesson_id"], payload.course_id)
    return lesson


async def delete_lesson(db: AsyncIOMotorDatabase, lesson_id: str, user: dict) -> dict:
    """Delete one lesson and remove every reference to it"""
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson:
        raise HTTPException(404, "Lesson not found")

    course_id = lesson["course_id"]
    course = await get_course(db, course_id)
    if course and not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to delete this lesson")

    await db.lessons.delete_one({"lesson_id": lesson_id})

    if course:
        modules = course.get("modules", [])
        for module in modules:
            module["lessons"] = [lid for lid in module.get("lessons", []) if lid != lesson_id]
        await db.courses.update_one(
            {"course_id": course_id},
            {"$set": {"modules": modules, "updated_at": datetime.utcnow()}}
        )

    await db.enrollments.update_many(
        {"course_id": course_id},
        {"$pull": {"progress.completed_lessons": {"lesson_id": lesson_id}}}
    )
    await recompute_course_lesson_stats(db, course_id)
    await sync_course_enrollments(db, course_id)

    logger.info("Lesson %s deleted from course %s", lesson_id, course_id)
    return {"lesson_id": lesson_id, "course_id": course_id}


async def delete_course(db: AsyncIOMotorDatabase, course_id: str, user: dict) -> dict:
    course = await get_course(db, course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to delete this course")

    enrolled = await db.enrollments.count_documents({"course_id": course_id})
    if enrolled > 0:
        raise HTTPException(400, "Cannot delete course with active enrollments")

    async with await db.client.start_session() as session:
        async with session.start_transaction():
            await db.lessons.delete_many({"course_id": course_id}, session=session)
            await db.reviews.delete_many({"course_id": course_id}, session=session)
            await db.quizzes.delete_many({"course_id": course_id}, session=session)
            await db.courses.delete_one({"course_id": course_id}, session=session)

    logger.info("Course %s deleted", course_id)
    return {"course_id": course_id, "deleted": True}


async def toggle_publish(db: AsyncIOMotorDatabase, course_id: str, user: dict) -> dict:
    """Switch between draft and published; publishing needs a description and content"""
    course = await get_course(db, course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to publish this course")

    now = datetime.utcnow()
    if course.get("status") == "published":
        updates = {"status": "draft", "updated_at": now}
    else:
        if not course.get("description"):
            raise HTTPException(400, "Course needs a description before publishing")
        if not any(m.get("lessons") for m in course.get("modules", [])):
            raise HTTPException(400, "Course needs at least one module with a lesson before publishing")
        updates = {"status": "published", "published_at": now, "updated_at": now}

    await db.courses.update_one({"course_id": course_id}, {"$set": updates})
    course.update(updates)
    return course
