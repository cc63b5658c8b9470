from datetime import datetime

from coursehub.courses.stats import (
    round_half_up, compute_percentage, apply_completion_transition,
    calculate_average_rating, recompute_course_lesson_stats,
    update_course_stats, update_enrollment_progress
)
from coursehub.courses.database import build_enrollment


def seed_course(mongo, course_id="COURSE_A", **extra):
    mongo.courses.insert_one({
        "course_id": course_id,
        "slug": course_id.lower(),
        "title": "Course",
        "instructor_id": "USR_INSTRUCTOR",
        "modules": [],
        "total_lessons": 0,
        "total_duration": 0,
        "enrollment_count": 0,
        "rating": {"average": 0, "count": 0},
        "reviews": [],
        **extra
    })


def test_round_half_up_matches_arithmetic_rounding():
    assert round_half_up(4.65, 1) == 4.7
    assert round_half_up(2.5) == 3
    assert round_half_up(66.666) == 67
    assert round_half_up(4.0, 1) == 4.0


def test_compute_percentage():
    assert compute_percentage(0, 0) == 0
    assert compute_percentage(3, 0) == 0
    assert compute_percentage(1, 3) == 33
    assert compute_percentage(2, 3) == 67
    assert compute_percentage(5, 4) == 100


def test_completion_transition_to_completed():
    enrollment = {"status": "active", "completed_at": None, "progress": {}}
    now = datetime(2024, 5, 1)

    updates = apply_completion_transition(enrollment, 100, now)

    assert updates == {"progress.percentage_complete": 100, "status": "completed", "completed_at": now}
    assert enrollment["status"] == "completed"


def test_completion_transition_back_to_active():
    enrollment = {"status": "completed", "completed_at": datetime(2024, 1, 1), "progress": {}}

    updates = apply_completion_transition(enrollment, 50)

    assert updates["status"] == "active"
    assert updates["completed_at"] is None
    assert enrollment["progress"]["percentage_complete"] == 50


def test_completion_transition_keeps_existing_completion_date():
    completed_at = datetime(2024, 1, 1)
    enrollment = {"status": "completed", "completed_at": completed_at, "progress": {}}

    updates = apply_completion_transition(enrollment, 100)

    assert updates == {"progress.percentage_complete": 100}
    assert enrollment["completed_at"] == completed_at


async def test_average_rating_rounds_to_one_decimal(db, mongo):
    seed_course(mongo)
    for i, rating in enumerate([5, 5, 4]):
        mongo.reviews.insert_one({"review_id": f"REV_{i}", "course_id": "COURSE_A", "student_id": f"S{i}", "rating": rating})

    await calculate_average_rating(db, "COURSE_A")

    course = mongo.courses.find_one({"course_id": "COURSE_A"})
    assert course["rating"] == {"average": 4.7, "count": 3}
    assert sorted(course["reviews"]) == ["REV_0", "REV_1", "REV_2"]


async def test_average_rating_resets_without_reviews(db, mongo):
    seed_course(mongo, rating={"average": 3.5, "count": 2}, reviews=["REV_OLD"])

    await calculate_average_rating(db, "COURSE_A")

    course = mongo.courses.find_one({"course_id": "COURSE_A"})
    assert course["rating"] == {"average": 0, "count": 0}
    assert course["reviews"] == []


async def test_lesson_stats_sum_durations(db, mongo):
    seed_course(mongo)
    mongo.lessons.insert_many([
        {"lesson_id": "LES_1", "course_id": "COURSE_A", "duration": 10},
        {"lesson_id": "LES_2", "course_id": "COURSE_A", "duration": 25},
        {"lesson_id": "LES_3", "course_id": "COURSE_B", "duration": 99},
    ])

    await recompute_course_lesson_stats(db, "COURSE_A")

    course = mongo.courses.find_one({"course_id": "COURSE_A"})
    assert course["total_lessons"] == 2
    assert course["total_duration"] == 35


async def test_update_course_stats_repairs_every_cache(db, mongo):
    seed_course(mongo, total_lessons=7, enrollment_count=40)
    mongo.lessons.insert_one({"lesson_id": "LES_1", "course_id": "COURSE_A", "duration": 12})
    mongo.enrollments.insert_one(build_enrollment("USR_1", "COURSE_A", "free"))
    mongo.reviews.insert_one({"review_id": "REV_1", "course_id": "COURSE_A", "student_id": "USR_1", "rating": 3})

    stats = await update_course_stats(db, "COURSE_A")

    assert stats == {
        "enrollment_count": 1,
        "total_lessons": 1,
        "total_duration": 12,
        "rating": {"average": 3.0, "count": 1},
    }
    assert mongo.courses.find_one({"course_id": "COURSE_A"})["total_lessons"] == 1


async def test_enrollment_progress_with_zero_lessons(db, mongo):
    seed_course(mongo, total_lessons=0)
    enrollment = build_enrollment("USR_1", "COURSE_A", "free")
    enrollment["progress"]["completed_lessons"] = [{"lesson_id": "LES_GONE"}]
    mongo.enrollments.insert_one(enrollment)

    result = await update_enrollment_progress(db, enrollment)

    assert result["progress"]["percentage_complete"] == 0
    assert result["status"] == "active"


async def test_enrollment_progress_reaches_completion(db, mongo):
    seed_course(mongo, total_lessons=2)
    enrollment = build_enrollment("USR_1", "COURSE_A", "free")
    enrollment["progress"]["completed_lessons"] = [{"lesson_id": "LES_1"}, {"lesson_id": "LES_2"}]
    mongo.enrollments.insert_one(enrollment)

    await update_enrollment_progress(db, enrollment)

    stored = mongo.enrollments.find_one({"enrollment_id": enrollment["enrollment_id"]})
    assert stored["progress"]["percentage_complete"] == 100
    assert stored["status"] == "completed"
    assert stored["completed_at"] is not None
