from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from datetime import datetime
from typing import Optional

from coursehub.courses.models import LessonCreate, LessonUpdate, parse_lesson_content
from coursehub.courses.database import get_course, find_enrollment, can_manage_course, serialize_mongo, serialize_many
from coursehub.courses.course_editor import CourseEditError, add_lesson, delete_lesson
from coursehub.courses.stats import recompute_course_lesson_stats
from coursehub.courses.dependencies import get_db, get_current_user, get_optional_user, require_roles

router = APIRouter(tags=["Lessons"])


async def _load_lesson_for_edit(db, lesson_id: str, user: dict):
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson:
        raise HTTPException(404, "Lesson not found")

    course = await get_course(db, lesson["course_id"])
    if not course or not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized")
    return lesson


@router.get("/lessons")
async def list_lessons(
    course_id: str,
    module_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: Optional[dict] = Depends(get_optional_user)
):
    """Lessons of a course in order; locked lesson content is hidden from visitors"""
    course = await get_course(db, course_id)
    if not course:
        raise HTTPException(404, "Course not found")

    manager = bool(user) and can_manage_course(course, user)
    if course.get("status") != "published" and not manager:
        raise HTTPException(403, "Access denied to this course's lessons")

    query = {"course_id": course_id}
    if module_id:
        query["module_id"] = module_id
    lessons = await db.lessons.find(query).sort("order", 1).to_list(length=None)

    enrolled = manager or bool(user and await find_enrollment(db, course_id, user["user_id"]))
    if not enrolled:
        for lesson in lessons:
            if not (lesson.get("is_preview") or lesson.get("is_free")):
                lesson.pop("content", None)

    return {"lessons": serialize_many(lessons), "count": len(lessons)}


@router.post("/lessons", status_code=201)
async def create_lesson(
    payload: LessonCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    try:
        lesson = await add_lesson(db, payload, user)
    except CourseEditError as e:
        raise HTTPException(400, str(e))
    return serialize_mongo(lesson)


@router.get("/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: Optional[dict] = Depends(get_optional_user)
):
    """Preview and free lessons are public; everything else needs an enrollment"""
    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    if not lesson:
        raise HTTPException(404, "Lesson not found")

    if not (lesson.get("is_preview") or lesson.get("is_free")):
        if not user:
            raise HTTPException(401, "Unauthorized")
        course = await get_course(db, lesson["course_id"])
        enrolled = await find_enrollment(db, lesson["course_id"], user["user_id"])
        if not enrolled and not (course and can_manage_course(course, user)):
            raise HTTPException(403, "Enroll in this course to view the lesson")

    return serialize_mongo(lesson)


@router.put("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: str,
    payload: LessonUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    lesson = await _load_lesson_for_edit(db, lesson_id, user)

    updates = payload.model_dump(exclude_unset=True)
    if "content" in updates:
        try:
            updates["content"] = parse_lesson_content(lesson["type"], updates["content"])
        except ValidationError as e:
            raise HTTPException(400, f"Invalid lesson content: {e}")
    updates["updated_at"] = datetime.utcnow()

    await db.lessons.update_one({"lesson_id": lesson_id}, {"$set": updates})
    await recompute_course_lesson_stats(db, lesson["course_id"])

    lesson.update(updates)
    return serialize_mongo(lesson)


@router.delete("/lessons/{lesson_id}")
async def delete_lesson_endpoint(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    await _load_lesson_for_edit(db, lesson_id, user)
    return await delete_lesson(db, lesson_id, user)
