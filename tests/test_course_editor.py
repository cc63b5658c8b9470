import pytest
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from coursehub.courses.course_editor import (
    CourseEditError, plan_course_structure, create_course_with_structure,
    update_course_structure, sync_course_enrollments, delete_lesson, delete_course, toggle_publish
)
from coursehub.courses.database import build_enrollment, slugify
from coursehub.courses.models import CourseCreate, CourseUpdate

from conftest import course_payload, lesson_payload, make_user


async def create_course(db, instructor, **overrides):
    return await create_course_with_structure(db, CourseCreate(**course_payload(**overrides)), instructor)


def enroll(mongo, student_id, course_id, completed=(), status="active"):
    enrollment = build_enrollment(student_id, course_id, "free")
    enrollment["progress"]["completed_lessons"] = [{"lesson_id": lid, "time_spent": 0} for lid in completed]
    enrollment["status"] = status
    if status == "completed":
        enrollment["progress"]["percentage_complete"] = 100
        enrollment["completed_at"] = enrollment["enrolled_at"]
    mongo.enrollments.insert_one(enrollment)
    return enrollment["enrollment_id"]

# ==================== PLANNING ====================

def test_plan_assigns_ids_to_new_modules_and_lessons():
    modules = [{"module_id": "temp_m1", "title": "Intro", "lessons": [
        lesson_payload("One", lesson_id="temp_1"),
        lesson_payload("Two"),
    ]}]

    plan = plan_course_structure("COURSE_X", modules, [], "USR_I")

    assert plan.modules[0]["module_id"].startswith("MOD_")
    assert [l["order"] for l in plan.lessons_to_create] == [0, 1]
    assert all(l["lesson_id"].startswith("LES_") for l in plan.lessons_to_create)
    assert plan.modules[0]["lessons"] == [l["lesson_id"] for l in plan.lessons_to_create]
    assert plan.lessons_to_update == []
    assert plan.lessons_to_delete == []


def test_plan_updates_known_lessons_and_deletes_missing_ones():
    keep, drop = "LES_AAAAAAAAAAAA", "LES_BBBBBBBBBBBB"
    modules = [{"module_id": "MOD_CCCCCCCCCCCC", "title": "Intro", "lessons": [
        lesson_payload("Kept", lesson_id=keep),
    ]}]

    plan = plan_course_structure("COURSE_X", modules, [keep, drop], "USR_I")

    assert plan.modules[0]["module_id"] == "MOD_CCCCCCCCCCCC"
    assert len(plan.lessons_to_update) == 1
    assert plan.lessons_to_create == []
    assert plan.lessons_to_delete == [drop]


def test_plan_rejects_lesson_without_title():
    modules = [{"title": "Intro", "lessons": [lesson_payload("Fine"), {"type": "text"}]}]

    with pytest.raises(CourseEditError, match="module index 0, lesson index 1"):
        plan_course_structure("COURSE_X", modules, [], "USR_I")


def test_plan_rejects_malformed_lesson_id():
    modules = [{"title": "Intro", "lessons": [lesson_payload("Odd", lesson_id="507f1f77bcf86cd799439011")]}]

    with pytest.raises(CourseEditError, match="Invalid lesson id format"):
        plan_course_structure("COURSE_X", modules, [], "USR_I")


def test_plan_rejects_lesson_from_another_course():
    modules = [{"title": "Intro", "lessons": [lesson_payload("Stolen", lesson_id="LES_DDDDDDDDDDDD")]}]

    with pytest.raises(CourseEditError, match="does not belong"):
        plan_course_structure("COURSE_X", modules, ["LES_AAAAAAAAAAAA"], "USR_I")


def test_plan_rejects_content_of_the_wrong_shape():
    modules = [{"title": "Intro", "lessons": [lesson_payload("Clip", "video", source="dailymotion")]}]

    with pytest.raises(CourseEditError, match="Invalid content"):
        plan_course_structure("COURSE_X", modules, [], "USR_I")

def test_plan_rejects_repeated_module_id():
    modules = [
        {"module_id": "MOD_CCCCCCCCCCCC", "title": "One", "lessons": [lesson_payload("A")]},
        {"module_id": "MOD_CCCCCCCCCCCC", "title": "Two", "lessons": [lesson_payload("B")]},
    ]

    with pytest.raises(CourseEditError, match="Module MOD_CCCCCCCCCCCC appears more than once"):
        plan_course_structure("COURSE_X", modules, [], "USR_I")


def test_slugify_falls_back_for_symbol_only_titles():
    assert slugify("Intro to  SQL!") == "intro-to-sql"
    first, second = slugify("#### !!"), slugify("#### !!")
    assert first.startswith("course-")
    assert first != second

# ==================== TRANSACTIONS ====================

async def test_create_course_with_structure(db, mongo, instructor):
    course = await create_course(db, instructor)

    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["slug"] == "python-for-data-science"
    assert stored["status"] == "draft"
    assert stored["total_lessons"] == 2
    assert stored["total_duration"] == 20
    assert mongo.lessons.count_documents({"course_id": course["course_id"]}) == 2
    assert db.client.transactions == 1


async def test_removing_a_lesson_keeps_completed_student_at_full_progress(db, mongo, instructor, student):
    course = await create_course(db, instructor)
    module = course["modules"][0]
    first, second = module["lessons"]
    enrollment_id = enroll(mongo, student["user_id"], course["course_id"], [first, second], status="completed")

    payload = CourseUpdate(modules=[{
        "module_id": module["module_id"], "title": "Basics",
        "lessons": [lesson_payload("Welcome", lesson_id=first, body="Hello again")]
    }])
    result = await update_course_structure(db, course["course_id"], payload, instructor)
    await sync_course_enrollments(db, course["course_id"])

    assert result["deleted_lessons"] == [second]
    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["total_lessons"] == 1
    assert stored["modules"][0]["lessons"] == [first]
    assert mongo.lessons.find_one({"lesson_id": first})["content"]["body"] == "Hello again"
    assert mongo.lessons.find_one({"lesson_id": second}) is None

    enrollment = mongo.enrollments.find_one({"enrollment_id": enrollment_id})
    assert [c["lesson_id"] for c in enrollment["progress"]["completed_lessons"]] == [first]
    assert enrollment["progress"]["percentage_complete"] == 100
    assert enrollment["status"] == "completed"


async def test_adding_a_lesson_reopens_completed_enrollment(db, mongo, instructor, student):
    course = await create_course(db, instructor)
    module = course["modules"][0]
    first, second = module["lessons"]
    enrollment_id = enroll(mongo, student["user_id"], course["course_id"], [first, second], status="completed")

    payload = CourseUpdate(modules=[{
        "module_id": module["module_id"], "title": "Basics",
        "lessons": [
            lesson_payload("Welcome", lesson_id=first),
            lesson_payload("Setup", lesson_id=second),
            lesson_payload("Next steps", lesson_id="temp_new"),
        ]
    }])
    await update_course_structure(db, course["course_id"], payload, instructor)
    await sync_course_enrollments(db, course["course_id"])

    enrollment = mongo.enrollments.find_one({"enrollment_id": enrollment_id})
    assert enrollment["progress"]["percentage_complete"] == 67
    assert enrollment["status"] == "active"
    assert enrollment["completed_at"] is None


async def test_sync_is_idempotent(db, mongo, instructor, student):
    course = await create_course(db, instructor)
    first = course["modules"][0]["lessons"][0]
    enrollment_id = enroll(mongo, student["user_id"], course["course_id"], [first])

    await sync_course_enrollments(db, course["course_id"])
    once = mongo.enrollments.find_one({"enrollment_id": enrollment_id})
    await sync_course_enrollments(db, course["course_id"])
    twice = mongo.enrollments.find_one({"enrollment_id": enrollment_id})

    assert once["progress"] == twice["progress"]
    assert twice["progress"]["percentage_complete"] == 50


async def test_invalid_tree_writes_nothing(db, mongo, instructor):
    course = await create_course(db, instructor)
    payload = CourseUpdate(title="A brand new title", modules=[{"title": "Broken", "lessons": [{"type": "text"}]}])

    with pytest.raises(CourseEditError):
        await update_course_structure(db, course["course_id"], payload, instructor)

    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["title"] == "Python for Data Science"
    assert mongo.lessons.count_documents({"course_id": course["course_id"]}) == 2


async def test_duplicate_slug_rolls_back_lesson_writes(db, mongo, instructor):
    course = await create_course(db, instructor)
    await create_course(db, instructor, title="Statistics Refresher")
    module = course["modules"][0]
    first, second = module["lessons"]
    payload = CourseUpdate(title="Statistics Refresher", modules=[{
        "module_id": module["module_id"], "title": "Basics",
        "lessons": [lesson_payload("Welcome", lesson_id=first, body="Rewritten"), lesson_payload("Extra")]
    }])

    with pytest.raises(DuplicateKeyError):
        await update_course_structure(db, course["course_id"], payload, instructor)

    lessons = {l["lesson_id"]: l for l in mongo.lessons.find({"course_id": course["course_id"]})}
    assert set(lessons) == {first, second}
    assert lessons[first]["content"]["body"] == "Hello"
    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["title"] == "Python for Data Science"
    assert stored["modules"][0]["lessons"] == [first, second]


async def test_update_by_other_instructor_is_refused(db, mongo, instructor):
    course = await create_course(db, instructor)
    intruder = make_user(mongo, "USR_OTHER", "instructor")

    with pytest.raises(HTTPException) as exc:
        await update_course_structure(db, course["course_id"], CourseUpdate(modules=[]), intruder)

    assert exc.value.status_code == 403
    assert mongo.lessons.count_documents({"course_id": course["course_id"]}) == 2


async def test_basic_info_update_leaves_lessons_alone(db, mongo, instructor):
    course = await create_course(db, instructor)

    await update_course_structure(
        db, course["course_id"], CourseUpdate(title="Data Science with Python", certificate_enabled=False), instructor
    )

    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["slug"] == "data-science-with-python"
    assert stored["certificate"]["enabled"] is False
    assert stored["total_lessons"] == 2
    assert mongo.lessons.count_documents({"course_id": course["course_id"]}) == 2


async def test_admin_can_edit_any_course(db, mongo, instructor, admin):
    course = await create_course(db, instructor)

    result = await update_course_structure(db, course["course_id"], CourseUpdate(price=5000), admin)

    assert result["course"]["price"] == 5000

# ==================== SINGLE-ENTITY OPERATIONS ====================

async def test_delete_lesson_cascades(db, mongo, instructor, student):
    course = await create_course(db, instructor)
    first, second = course["modules"][0]["lessons"]
    enrollment_id = enroll(mongo, student["user_id"], course["course_id"], [first, second], status="completed")

    await delete_lesson(db, second, instructor)

    stored = mongo.courses.find_one({"course_id": course["course_id"]})
    assert stored["modules"][0]["lessons"] == [first]
    assert stored["total_lessons"] == 1
    assert stored["total_duration"] == 10
    enrollment = mongo.enrollments.find_one({"enrollment_id": enrollment_id})
    assert [c["lesson_id"] for c in enrollment["progress"]["completed_lessons"]] == [first]
    assert enrollment["progress"]["percentage_complete"] == 100


async def test_delete_missing_lesson(db, instructor):
    with pytest.raises(HTTPException) as exc:
        await delete_lesson(db, "LES_MISSING", instructor)
    assert exc.value.status_code == 404


async def test_delete_course_refused_with_enrollments(db, mongo, instructor, student):
    course = await create_course(db, instructor)
    enroll(mongo, student["user_id"], course["course_id"])

    with pytest.raises(HTTPException) as exc:
        await delete_course(db, course["course_id"], instructor)

    assert exc.value.status_code == 400
    assert mongo.courses.find_one({"course_id": course["course_id"]}) is not None


async def test_delete_course_removes_children(db, mongo, instructor):
    course = await create_course(db, instructor)
    mongo.quizzes.insert_one({"quiz_id": "QUIZ_1", "course_id": course["course_id"]})

    await delete_course(db, course["course_id"], instructor)

    assert mongo.courses.find_one({"course_id": course["course_id"]}) is None
    assert mongo.lessons.count_documents({"course_id": course["course_id"]}) == 0
    assert mongo.quizzes.count_documents({"course_id": course["course_id"]}) == 0


async def test_toggle_publish(db, mongo, instructor):
    course = await create_course(db, instructor)

    published = await toggle_publish(db, course["course_id"], instructor)
    assert published["status"] == "published"
    assert published["published_at"] is not None

    unpublished = await toggle_publish(db, course["course_id"], instructor)
    assert unpublished["status"] == "draft"


async def test_publish_needs_a_lesson(db, instructor):
    course = await create_course(db, instructor, modules=[{"title": "Empty"}])

    with pytest.raises(HTTPException) as exc:
        await toggle_publish(db, course["course_id"], instructor)

    assert exc.value.status_code == 400
