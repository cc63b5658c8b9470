from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime

from coursehub.courses.models import CertificateCreate
from coursehub.courses.database import new_id, get_course, get_enrollment, serialize_mongo, serialize_many
from coursehub.courses.dependencies import get_db, get_current_user
from coursehub.activity.service import ActivityType, log_activity
from coursehub.achievements.service import evaluate_achievements, check_certificate_achievements

router = APIRouter(tags=["Certificates"])


@router.post("/certificates", status_code=201)
async def issue_certificate(
    payload: CertificateCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    """Issue the certificate for a completed enrollment; one per enrollment"""
    enrollment = await get_enrollment(db, payload.enrollment_id)
    if not enrollment or enrollment["student_id"] != user["user_id"]:
        raise HTTPException(404, "Enrollment not found")
    if enrollment.get("status") != "completed" or not enrollment.get("completed_at"):
        raise HTTPException(400, "Course enrollment is not yet completed")

    course = await get_course(db, enrollment["course_id"])
    if not course or not course.get("certificate", {}).get("enabled"):
        raise HTTPException(400, "Certificates are not enabled for this course")

    if await db.certificates.find_one({"enrollment_id": payload.enrollment_id}):
        raise HTTPException(409, "Certificate already exists for this enrollment")

    now = datetime.utcnow()
    certificate = {
        "certificate_id": new_id("CERT"),
        "student_id": user["user_id"],
        "course_id": course["course_id"],
        "enrollment_id": payload.enrollment_id,
        "course_title": course["title"],
        "student_name": user.get("name", ""),
        "completion_date": enrollment["completed_at"],
        "issued_at": now
    }
    await db.certificates.insert_one(certificate)
    await db.enrollments.update_one(
        {"enrollment_id": payload.enrollment_id},
        {"$set": {"certificate": {
            "issued": True,
            "certificate_id": certificate["certificate_id"],
            "issued_at": now
        }}}
    )

    await log_activity(
        db, user["user_id"], ActivityType.CERTIFICATE_EARNED,
        f"You earned a certificate for: {course['title']}", course_id=course["course_id"]
    )
    background_tasks.add_task(evaluate_achievements, db, user["user_id"], check_certificate_achievements)
    return serialize_mongo(certificate)


@router.get("/certificates/me")
async def my_certificates(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: dict = Depends(get_current_user)
):
    certificates = await db.certificates.find({"student_id": user["user_id"]}).sort("issued_at", -1).to_list(length=None)
    return {"certificates": serialize_many(certificates), "count": len(certificates)}


@router.get("/certificates/{certificate_id}")
async def verify_certificate(certificate_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Public lookup so a certificate can be verified by its id"""
    certificate = await db.certificates.find_one({"certificate_id": certificate_id})
    if not certificate:
        raise HTTPException(404, "Certificate not found")
    return serialize_mongo(certificate)
