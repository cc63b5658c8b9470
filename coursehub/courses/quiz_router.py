from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime

from coursehub.courses.models import QuizCreate, QuizUpdate, QuizAttemptCreate
from coursehub.courses.database import (
    new_id, get_course, get_enrollment, find_enrollment, can_manage_course, serialize_mongo
)
from coursehub.courses.grading import grade_quiz
from coursehub.courses.dependencies import get_db, get_current_user, require_roles
from coursehub.activity.service import ActivityType, log_activity
from coursehub.achievements.service import evaluate_achievements, check_quiz_achievements

router = APIRouter(tags=["Quizzes"])


def _public_quiz(quiz: dict) -> dict:
    """Quiz without answers, for students"""
    quiz = serialize_mongo(dict(quiz))
    quiz["questions"] = [
        {
            **{k: v for k, v in q.items() if k != "correct_answer"},
            "options": [{k: v for k, v in o.items() if k != "is_correct"} for o in q.get("options", [])]
        }
        for q in quiz.get("questions", [])
    ]
    return quiz


def _prepare_questions(questions) -> list:
    prepared = []
    for order, question in enumerate(questions, start=1):
        q = question.model_dump(mode="json")
        q["question_id"] = q.get("question_id") or new_id("QST")
        q["order"] = order
        for option in q["options"]:
            option["option_id"] = option.get("option_id") or new_id("OPT")
        prepared.append(q)
    return prepared


async def _load_quiz_for_edit(db, quiz_id: str, user: dict) -> dict:
    quiz = await db.quizzes.find_one({"quiz_id": quiz_id})
    if not quiz:
        raise HTTPException(404, "Quiz not found")
    course = await get_course(db, quiz["course_id"])
    if not course or not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to change this quiz")
    return quiz


@router.post("/quizzes", status_code=201)
async def create_quiz(
    payload: QuizCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    course = await get_course(db, payload.course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not can_manage_course(course, user):
        raise HTTPException(403, "Not authorized to create quiz for this course")

    questions = _prepare_questions(payload.questions)
    quiz_id = new_id("QUIZ")
    now = datetime.utcnow()
    quiz = {
        "quiz_id": quiz_id,
        "course_id": payload.course_id,
        "lesson_id": payload.lesson_id,
        "instructor_id": user["user_id"],
        "title": payload.title,
        "questions": questions,
        "total_points": sum(q["points"] or 1 for q in questions),
        "passing_score": payload.passing_score,
        "settings": {"attempts": payload.attempts},
        "analytics": {"total_attempts": 0},
        "created_at": now,
        "updated_at": now
    }
    await db.quizzes.insert_one(quiz)

    if payload.lesson_id:
        await db.lessons.update_one(
            {"lesson_id": payload.lesson_id, "course_id": payload.course_id},
            {"$set": {"type": "quiz", "content": {"type": "quiz", "quiz_id": quiz_id}, "updated_at": now}}
        )

    return serialize_mongo(quiz)


@router.get("/quizzes/{quiz_id}")
async def get_quiz(
    quiz_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    quiz = await db.quizzes.find_one({"quiz_id": quiz_id})
    if not quiz:
        raise HTTPException(404, "Quiz not found")

    course = await get_course(db, quiz["course_id"])
    if course and can_manage_course(course, user):
        return serialize_mongo(quiz)

    if not await find_enrollment(db, quiz["course_id"], user["user_id"]):
        raise HTTPException(403, "You must be enrolled in this course to view the quiz")
    return _public_quiz(quiz)


@router.post("/quizzes/{quiz_id}/attempts", status_code=201)
async def attempt_quiz(
    quiz_id: str,
    payload: QuizAttemptCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    quiz = await db.quizzes.find_one({"quiz_id": quiz_id})
    if not quiz:
        raise HTTPException(404, "Quiz not found")

    enrollment = await get_enrollment(db, payload.enrollment_id)
    if not enrollment or enrollment["student_id"] != user["user_id"]:
        raise HTTPException(404, "Enrollment not found")
    if enrollment["course_id"] != quiz["course_id"] or enrollment.get("status") not in ("active", "completed"):
        raise HTTPException(403, "You must be actively enrolled in this course to take the quiz")

    quiz_attempts = enrollment.get("quiz_attempts", [])
    record = next((r for r in quiz_attempts if r["quiz_id"] == quiz_id), None)
    max_attempts = quiz.get("settings", {}).get("attempts", 1)
    if max_attempts > 0 and record and len(record["attempts"]) >= max_attempts:
        raise HTTPException(400, f"Maximum attempts ({max_attempts}) reached for this quiz")

    result = grade_quiz(quiz, [a.model_dump() for a in payload.answers])
    attempt = {
        **result,
        "time_spent": payload.time_spent,
        "attempted_at": datetime.utcnow()
    }

    if record is None:
        record = {"quiz_id": quiz_id, "attempts": [], "best_score": 0, "passed": False}
        quiz_attempts.append(record)
    record["attempts"].append(attempt)
    record["best_score"] = max(record.get("best_score") or 0, result["percentage"])
    record["passed"] = record.get("passed", False) or result["passed"]

    await db.enrollments.update_one(
        {"enrollment_id": payload.enrollment_id},
        {"$set": {"quiz_attempts": quiz_attempts, "last_accessed_at": datetime.utcnow()}}
    )
    await db.quizzes.update_one({"quiz_id": quiz_id}, {"$inc": {"analytics.total_attempts": 1}})

    verb = "passed" if result["passed"] else "attempted"
    await log_activity(
        db, user["user_id"], ActivityType.QUIZ_ATTEMPT,
        f"You {verb} the quiz: {quiz['title']} (Score: {result['percentage']}%)",
        course_id=quiz["course_id"], quiz_id=quiz_id
    )
    background_tasks.add_task(
        evaluate_achievements, db, user["user_id"], check_quiz_achievements,
        percentage=result["percentage"]
    )

    return {
        "attempt": attempt,
        "attempts_used": len(record["attempts"]),
        "best_score": record["best_score"],
        "passed": record["passed"]
    }


@router.put("/quizzes/{quiz_id}")
async def update_quiz(
    quiz_id: str,
    payload: QuizUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    quiz = await _load_quiz_for_edit(db, quiz_id, user)

    updates = {"updated_at": datetime.utcnow()}
    if payload.title is not None:
        updates["title"] = payload.title
    if payload.passing_score is not None:
        updates["passing_score"] = payload.passing_score
    if payload.attempts is not None:
        updates["settings.attempts"] = payload.attempts
    if payload.questions is not None:
        questions = _prepare_questions(payload.questions)
        updates["questions"] = questions
        updates["total_points"] = sum(q["points"] or 1 for q in questions)

    await db.quizzes.update_one({"quiz_id": quiz_id}, {"$set": updates})
    return serialize_mongo(await db.quizzes.find_one({"quiz_id": quiz["quiz_id"]}))


@router.delete("/quizzes/{quiz_id}")
async def delete_quiz(
    quiz_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(require_roles("instructor", "admin"))
):
    """Quizzes that students have already attempted can't be deleted"""
    await _load_quiz_for_edit(db, quiz_id, user)

    if await db.enrollments.find_one({"quiz_attempts.quiz_id": quiz_id}):
        raise HTTPException(400, "Cannot delete quiz with existing attempts")

    await db.quizzes.delete_one({"quiz_id": quiz_id})
    await db.lessons.update_many({"content.quiz_id": quiz_id}, {"$set": {"content.quiz_id": None}})
    return {"quiz_id": quiz_id, "deleted": True}


@router.get("/quizzes/{quiz_id}/attempts")
async def my_quiz_attempts(
    quiz_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    if not await db.quizzes.find_one({"quiz_id": quiz_id}):
        raise HTTPException(404, "Quiz not found")

    enrollment = await db.enrollments.find_one({"student_id": user["user_id"], "quiz_attempts.quiz_id": quiz_id})
    records = (enrollment or {}).get("quiz_attempts", [])
    record = next((r for r in records if r["quiz_id"] == quiz_id), None)
    return record or {"quiz_id": quiz_id, "attempts": [], "best_score": 0, "passed": False}
