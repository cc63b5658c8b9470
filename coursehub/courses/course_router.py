from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
from typing import Optional

from coursehub.courses.models import CourseCreate, CourseUpdate, CourseCategory, CourseLevel
from coursehub.courses.database import (
    get_course, get_course_with_lessons, list_courses, can_manage_course,
    serialize_mongo, serialize_many
)
from coursehub.courses.course_editor import (
    CourseEditError, create_course_with_structure, update_course_structure,
    sync_course_enrollments, delete_course, toggle_publish
)
from coursehub.courses.stats import update_course_stats
from coursehub.courses.dependencies import get_db, get_current_user, get_optional_user, require_roles

router = APIRouter(tags=["Course Management"])

# ==================== COURSE CRUD ====================

@router.get("/courses")
async def list_courses_endpoint(
    category: Optional[CourseCategory] = None,
    level: Optional[CourseLevel] = None,
    search: Optional[str] = None,
    instructor_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Browse the published catalog"""
    filters = {
        "category": category.value if category else None,
        "level": level.value if level else None,
        "search": search,
        "instructor_id": instructor_id
    }
    courses = await list_courses(db, filters, skip, limit)
    return {
        "courses": serialize_many(courses),
        "count": len(courses),
        "skip": skip,
        "limit": limit
    }


@router.get("/courses/mine")
async def list_my_courses(
    skip: int = 0,
    limit: int = 20,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    cursor = db.courses.find(
        {"instructor_id": user["user_id"]}
    ).sort("created_at", -1).skip(skip).limit(limit)

    courses = await cursor.to_list(length=limit)
    return {
        "courses": serialize_many(courses),
        "count": len(courses),
        "skip": skip,
        "limit": limit
    }


@router.get("/courses/{course_id}")
async def get_course_endpoint(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: Optional[dict] = Depends(get_optional_user)
):
    """Course detail with lessons in module order. Drafts are visible to the owner and admins only."""
    course = await get_course_with_lessons(db, course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if course["status"] != "published" and not (user and can_manage_course(course, user)):
        raise HTTPException(404, "Course not found")
    return course


@router.post("/courses", status_code=201)
async def create_course_endpoint(
    payload: CourseCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    try:
        course = await create_course_with_structure(db, payload, user)
    except CourseEditError as e:
        raise HTTPException(400, str(e))
    except DuplicateKeyError:
        raise HTTPException(400, "A course with this title already exists")
    return serialize_mongo(course)


@router.put("/courses/{course_id}")
async def update_course_endpoint(
    course_id: str,
    payload: CourseUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    """Save basic info and the full module/lesson tree; enrollments are synced after commit"""
    try:
        result = await update_course_structure(db, course_id, payload, user)
    except CourseEditError as e:
        raise HTTPException(400, str(e))
    except DuplicateKeyError:
        raise HTTPException(400, "A course with this title already exists")

    background_tasks.add_task(sync_course_enrollments, db, course_id)
    return {
        "course": await get_course_with_lessons(db, course_id),
        "deleted_lessons": result["deleted_lessons"]
    }


@router.delete("/courses/{course_id}")
async def delete_course_endpoint(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    return await delete_course(db, course_id, user)


@router.post("/courses/{course_id}/publish")
async def publish_course_endpoint(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    course = await toggle_publish(db, course_id, user)
    return {
        "course_id": course_id,
        "status": course["status"],
        "published_at": course.get("published_at")
    }

# ==================== INSTRUCTOR VIEWS ====================

@router.get("/courses/{course_id}/students")
async def course_students(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    course = await get_course(db, course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized")

    enrollments = await db.enrollments.find({"course_id": course_id}).sort("enrolled_at", -1).to_list(length=None)
    return {"enrollments": serialize_many(enrollments), "count": len(enrollments)}


@router.post("/courses/{course_id}/stats/rebuild")
async def rebuild_course_stats(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("admin"))
):
    """Recompute every cached course figure and re-sync enrollment progress"""
    if not await get_course(db, course_id):
        raise HTTPException(404, "Course not found")

    stats = await update_course_stats(db, course_id)
    synced = await sync_course_enrollments(db, course_id)
    return {"course_id": course_id, "stats": stats, "enrollments_synced": synced}
