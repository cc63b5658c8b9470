"""
CourseHub Configuration
Database, auth and domain settings
"""

import logging
import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "coursehub_db")

# Tokens are issued by the external identity provider
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://localhost:9000/api/v1/auth/login")
AUTH_TIMEOUT_SECONDS = 20

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
VERSION = os.getenv("VERSION")

# Quiz grading defaults
DEFAULT_QUIZ_PASSING_SCORE = 70
DEFAULT_QUIZ_ATTEMPTS = 1

# Client-side editors send ids with this prefix for unsaved modules/lessons
PLACEHOLDER_ID_PREFIX = "temp_"


def setup_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def get_cors_settings():
    return {
        "allow_origins": CORS_ORIGINS,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
