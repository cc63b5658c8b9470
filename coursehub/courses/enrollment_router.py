"""
ENROLLMENT ROUTER
File: coursehub/courses/enrollment_router.py

Enrollment lifecycle, lesson completion and assignment submissions.
Achievement checks are scheduled as background tasks after each write.
"""

import logging
from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
from datetime import datetime

from coursehub.courses.models import (
    EnrollmentCreate, EnrollmentStatus, EnrollmentUpdate, LessonCompletion,
    AssignmentSubmission, AssignmentGrade
)
from coursehub.courses.database import (
    new_id, build_enrollment, get_course, get_enrollment, find_enrollment,
    get_user_enrollments, can_manage_course, serialize_mongo, serialize_many
)
from coursehub.courses.stats import update_enrollment_progress
from coursehub.courses.dependencies import (
    get_db, get_current_user, require_roles
)
from coursehub.activity.service import ActivityType, log_activity
from coursehub.achievements.service import (
    evaluate_achievements, check_enrollment_achievements, check_lesson_achievements,
    check_course_completion_achievements, check_assignment_achievements
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Enrollments"])


async def _load_own_enrollment(db, enrollment_id: str, user: dict) -> dict:
    enrollment = await get_enrollment(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    if enrollment["student_id"] != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to update this enrollment")
    return enrollment


async def _refresh_enrollment_count(db, course_id: str):
    count = await db.enrollments.count_documents({"course_id": course_id})
    await db.courses.update_one({"course_id": course_id}, {"$set": {"enrollment_count": count}})

# ==================== ENROLLMENT ENDPOINTS ====================

@router.post("/enrollments", status_code=201)
async def enroll_endpoint(
    payload: EnrollmentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("student"))
):
    course = await get_course(db, payload.course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    if course.get("status") != "published":
        raise HTTPException(status_code=400, detail="Course is not available for enrollment")
    if await find_enrollment(db, payload.course_id, user["user_id"]):
        raise HTTPException(status_code=400, detail="You are already enrolled in this course")

    enrollment_type = "free" if course.get("price", 0) == 0 else payload.enrollment_type.value
    enrollment = build_enrollment(user["user_id"], payload.course_id, enrollment_type)
    try:
        await db.enrollments.insert_one(enrollment)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You are already enrolled in this course")

    await db.courses.update_one({"course_id": payload.course_id}, {"$inc": {"enrollment_count": 1}})
    await log_activity(
        db, user["user_id"], ActivityType.ENROLLMENT,
        f"You enrolled in the course: {course['title']}", course_id=payload.course_id
    )
    background_tasks.add_task(evaluate_achievements, db, user["user_id"], check_enrollment_achievements)

    logger.info("User %s enrolled in %s", user["user_id"], payload.course_id)
    return serialize_mongo(enrollment)


@router.get("/enrollments")
async def list_enrollments(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    """Students see their own enrollments, instructors those in their courses, admins all"""
    role = user.get("role")
    if role == "student":
        enrollments = await get_user_enrollments(db, user["user_id"])
    elif role == "instructor":
        courses = await db.courses.find({"instructor_id": user["user_id"]}, {"course_id": 1}).to_list(length=None)
        enrollments = await db.enrollments.find(
            {"course_id": {"$in": [c["course_id"] for c in courses]}}
        ).sort("enrolled_at", -1).to_list(length=None)
    else:
        enrollments = await db.enrollments.find({}).sort("enrolled_at", -1).to_list(length=None)

    return {"enrollments": serialize_many(enrollments), "count": len(enrollments)}


@router.get("/enrollments/{enrollment_id}")
async def get_enrollment_endpoint(
    enrollment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    enrollment = await get_enrollment(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")

    if enrollment["student_id"] != user["user_id"]:
        course = await get_course(db, enrollment["course_id"])
        if not course or not can_manage_course(course, user):
            raise HTTPException(status_code=403, detail="Not authorized to view this enrollment")

    return serialize_mongo(enrollment)


@router.put("/enrollments/{enrollment_id}")
async def update_enrollment_status(
    enrollment_id: str,
    payload: EnrollmentUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("admin"))
):
    """Admin status change, e.g. suspending or refunding an enrollment"""
    enrollment = await get_enrollment(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")

    updates = {"status": payload.status.value}
    if payload.status == EnrollmentStatus.COMPLETED:
        updates["completed_at"] = enrollment.get("completed_at") or datetime.utcnow()
    elif payload.status == EnrollmentStatus.ACTIVE:
        updates["completed_at"] = None

    await db.enrollments.update_one({"enrollment_id": enrollment_id}, {"$set": updates})
    enrollment.update(updates)
    logger.info("Enrollment %s set to %s by %s", enrollment_id, payload.status.value, user["user_id"])
    return serialize_mongo(enrollment)


@router.delete("/enrollments/{enrollment_id}")
async def delete_enrollment(
    enrollment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("admin"))
):
    enrollment = await get_enrollment(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")

    await db.enrollments.delete_one({"enrollment_id": enrollment_id})
    await _refresh_enrollment_count(db, enrollment["course_id"])
    return {"enrollment_id": enrollment_id, "deleted": True}

# ==================== PROGRESS ====================

@router.post("/enrollments/{enrollment_id}/complete-lesson")
async def complete_lesson(
    enrollment_id: str,
    payload: LessonCompletion,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    enrollment = await _load_own_enrollment(db, enrollment_id, user)
    course_id = enrollment["course_id"]

    lesson = await db.lessons.find_one({"lesson_id": payload.lesson_id, "course_id": course_id})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found in this course")

    now = datetime.utcnow()
    result = await db.enrollments.update_one(
        {
            "enrollment_id": enrollment_id,
            "progress.completed_lessons.lesson_id": {"$ne": payload.lesson_id}
        },
        {
            "$push": {"progress.completed_lessons": {
                "lesson_id": payload.lesson_id,
                "completed_at": now,
                "time_spent": payload.time_spent
            }},
            "$inc": {"progress.total_time_spent": payload.time_spent}
        }
    )
    newly_completed = result.modified_count > 0

    await db.enrollments.update_one(
        {"enrollment_id": enrollment_id},
        {"$set": {"progress.current_lesson": payload.lesson_id, "last_accessed_at": now}}
    )

    # Keep the course's lesson count honest before computing the percentage
    total_lessons = await db.lessons.count_documents({"course_id": course_id})
    await db.courses.update_one({"course_id": course_id}, {"$set": {"total_lessons": total_lessons}})

    was_completed = enrollment.get("status") == "completed"
    enrollment = await update_enrollment_progress(db, await get_enrollment(db, enrollment_id))

    checks = []
    if newly_completed:
        await log_activity(
            db, user["user_id"], ActivityType.LESSON_COMPLETE,
            f"You completed the lesson: {lesson['title']}",
            course_id=course_id, lesson_id=payload.lesson_id
        )
        checks.append(check_lesson_achievements)
    if enrollment["status"] == "completed" and not was_completed:
        checks.append(check_course_completion_achievements)
    if checks:
        background_tasks.add_task(evaluate_achievements, db, user["user_id"], *checks)

    return {
        "enrollment": serialize_mongo(enrollment),
        "newly_completed": newly_completed,
        "percentage_complete": enrollment["progress"]["percentage_complete"]
    }

# ==================== ASSIGNMENTS ====================

@router.post("/enrollments/{enrollment_id}/assignments/{lesson_id}", status_code=201)
async def submit_assignment(
    enrollment_id: str,
    lesson_id: str,
    payload: AssignmentSubmission,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    enrollment = await _load_own_enrollment(db, enrollment_id, user)

    lesson = await db.lessons.find_one({"lesson_id": lesson_id, "course_id": enrollment["course_id"]})
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found in this course")
    if lesson.get("type") != "assignment":
        raise HTTPException(status_code=400, detail="Lesson is not an assignment")
    if not payload.text and not payload.files:
        raise HTTPException(status_code=400, detail="Submission needs text or files")

    submission = {
        "submission_id": new_id("SUB"),
        "text": payload.text,
        "files": [f.model_dump() for f in payload.files],
        "submitted_at": datetime.utcnow(),
        "score": None,
        "feedback": None,
        "graded_at": None
    }

    assignments = enrollment.get("assignments", [])
    entry = next((a for a in assignments if a["lesson_id"] == lesson_id), None)
    if entry is None:
        entry = {"lesson_id": lesson_id, "submissions": [], "status": "not-submitted"}
        assignments.append(entry)
    entry["submissions"].append(submission)
    entry["status"] = "submitted"

    await db.enrollments.update_one(
        {"enrollment_id": enrollment_id},
        {"$set": {"assignments": assignments, "last_accessed_at": datetime.utcnow()}}
    )
    await log_activity(
        db, user["user_id"], ActivityType.ASSIGNMENT_SUBMITTED,
        f"You submitted the assignment: {lesson['title']}",
        course_id=enrollment["course_id"], lesson_id=lesson_id
    )
    background_tasks.add_task(evaluate_achievements, db, user["user_id"], check_assignment_achievements)

    return {"lesson_id": lesson_id, "status": entry["status"], "submission": submission}


@router.post("/enrollments/{enrollment_id}/assignments/{lesson_id}/grade")
async def grade_assignment(
    enrollment_id: str,
    lesson_id: str,
    payload: AssignmentGrade,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    """Grade the latest submission for an assignment lesson"""
    enrollment = await get_enrollment(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")

    course = await get_course(db, enrollment["course_id"])
    if not course or not can_manage_course(course, user):
        raise HTTPException(status_code=403, detail="Not authorized to grade this course")

    assignments = enrollment.get("assignments", [])
    entry = next((a for a in assignments if a["lesson_id"] == lesson_id), None)
    if not entry or not entry.get("submissions"):
        raise HTTPException(status_code=404, detail="No submission to grade")

    lesson = await db.lessons.find_one({"lesson_id": lesson_id})
    max_score = ((lesson or {}).get("content") or {}).get("max_score")
    if max_score is not None and payload.score > max_score:
        raise HTTPException(status_code=400, detail=f"Score cannot exceed {max_score}")

    latest = entry["submissions"][-1]
    latest.update({"score": payload.score, "feedback": payload.feedback, "graded_at": datetime.utcnow()})
    entry["status"] = "graded"

    await db.enrollments.update_one({"enrollment_id": enrollment_id}, {"$set": {"assignments": assignments}})
    return {"lesson_id": lesson_id, "status": entry["status"], "submission": latest}
