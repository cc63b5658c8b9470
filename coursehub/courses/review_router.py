from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError
from datetime import datetime

from coursehub.courses.models import ReviewCreate, ReviewUpdate
from coursehub.courses.database import new_id, get_course, find_enrollment, serialize_mongo, serialize_many
from coursehub.courses.stats import calculate_average_rating
from coursehub.courses.dependencies import get_db, get_current_user
from coursehub.activity.service import ActivityType, log_activity
from coursehub.achievements.service import evaluate_achievements, check_review_achievements

router = APIRouter(tags=["Reviews"])


async def _load_review(db, review_id: str) -> dict:
    review = await db.reviews.find_one({"review_id": review_id})
    if not review:
        raise HTTPException(404, "Review not found")
    return review


@router.post("/reviews", status_code=201)
async def create_review(
    payload: ReviewCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    course = await get_course(db, payload.course_id)
    if not course:
        raise HTTPException(404, "Course not found")
    if not await find_enrollment(db, payload.course_id, user["user_id"]):
        raise HTTPException(403, "You must be enrolled in this course to review it")

    now = datetime.utcnow()
    review = {
        "review_id": new_id("REV"),
        "student_id": user["user_id"],
        "course_id": payload.course_id,
        "rating": payload.rating,
        "comment": payload.comment,
        "created_at": now,
        "updated_at": now
    }
    try:
        await db.reviews.insert_one(review)
    except DuplicateKeyError:
        raise HTTPException(400, "You have already reviewed this course")

    await calculate_average_rating(db, payload.course_id)
    await log_activity(
        db, user["user_id"], ActivityType.REVIEW_SUBMITTED,
        f"You reviewed the course: {course['title']}", course_id=payload.course_id
    )
    background_tasks.add_task(evaluate_achievements, db, user["user_id"], check_review_achievements)
    return serialize_mongo(review)


@router.put("/reviews/{review_id}")
async def update_review(
    review_id: str,
    payload: ReviewUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    review = await _load_review(db, review_id)
    if review["student_id"] != user["user_id"]:
        raise HTTPException(403, "Not authorized to update this review")

    updates = payload.model_dump(exclude_unset=True)
    updates["updated_at"] = datetime.utcnow()
    await db.reviews.update_one({"review_id": review_id}, {"$set": updates})
    await calculate_average_rating(db, review["course_id"])

    review.update(updates)
    return serialize_mongo(review)


@router.delete("/reviews/{review_id}")
async def delete_review(
    review_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    review = await _load_review(db, review_id)
    if review["student_id"] != user["user_id"] and user.get("role") != "admin":
        raise HTTPException(403, "Not authorized to delete this review")

    await db.reviews.delete_one({"review_id": review_id})
    await calculate_average_rating(db, review["course_id"])
    return {"review_id": review_id, "deleted": True}


@router.get("/reviews/course/{course_id}")
async def course_reviews(
    course_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    cursor = db.reviews.find({"course_id": course_id}).sort("created_at", -1).skip(skip).limit(limit)
    reviews = await cursor.to_list(length=limit)
    return {"reviews": serialize_many(reviews), "count": len(reviews), "skip": skip, "limit": limit}
