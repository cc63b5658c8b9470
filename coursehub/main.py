import logging
from datetime import datetime
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient

from coursehub.config import MONGO_URL, MONGO_DB_NAME, VERSION, setup_logging, get_cors_settings
from coursehub.auth.auth_proxy import router as auth_router
from coursehub.courses.course_router import router as course_router
from coursehub.courses.lesson_router import router as lesson_router
from coursehub.courses.enrollment_router import router as enrollment_router
from coursehub.courses.quiz_router import router as quiz_router
from coursehub.courses.review_router import router as review_router
from coursehub.courses.certificate_router import router as certificate_router
from coursehub.achievements.router import router as achievement_router
from coursehub.activity.router import router as activity_router
from coursehub.courses.database import create_course_indexes
from coursehub.achievements.catalog import seed_achievements

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="CourseHub API")

# MongoDB Configuration
client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


@app.on_event("startup")
async def startup_event():
    await create_course_indexes(db)
    await seed_achievements(db)
    logger.info("CourseHub started on database %s", MONGO_DB_NAME)


app.add_middleware(CORSMiddleware, **get_cors_settings())


# ==================== ROUTER REGISTRATION ====================
app.include_router(auth_router)
app.include_router(course_router)
app.include_router(lesson_router)
app.include_router(enrollment_router)
app.include_router(quiz_router)
app.include_router(review_router)
app.include_router(certificate_router)
app.include_router(achievement_router)
app.include_router(activity_router)
# ============================================================


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION, "time": datetime.utcnow()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
