"""
Test fixtures

MongoDB is replaced by mongomock behind a thin async adapter shaped like the
motor API the service uses. mongomock has no sessions, so a transaction
snapshots the collections and restores them when its block raises.
"""

import copy
import mongomock
import pytest
from datetime import datetime
from jose import jwt
from pymongo import UpdateOne
from fastapi.testclient import TestClient

from coursehub.courses.database import create_course_indexes
from coursehub.achievements.catalog import seed_achievements

TEST_SECRET = "test-secret"


def run_sync(coro):
    """Drive a coroutine to completion; nothing behind the double ever suspends"""
    try:
        coro.send(None)
    except StopIteration as stop:
        return stop.value
    raise RuntimeError("coroutine suspended")

# ==================== ASYNC MONGO DOUBLE ====================

class AsyncCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def skip(self, count):
        self._cursor = self._cursor.skip(count)
        return self

    def limit(self, count):
        self._cursor = self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class BulkWriteResult:
    def __init__(self, matched, modified):
        self.matched_count = matched
        self.modified_count = modified


class AsyncCollection:
    def __init__(self, collection):
        self._collection = collection

    def find(self, *args, session=None, **kwargs):
        return AsyncCursor(self._collection.find(*args, **kwargs))

    def aggregate(self, pipeline, session=None, **kwargs):
        return AsyncCursor(iter(list(self._collection.aggregate(pipeline))))

    async def find_one(self, *args, session=None, **kwargs):
        return self._collection.find_one(*args, **kwargs)

    async def insert_one(self, doc, session=None):
        return self._collection.insert_one(doc)

    async def insert_many(self, docs, session=None):
        return self._collection.insert_many(docs)

    async def update_one(self, flt, update, upsert=False, session=None):
        return self._collection.update_one(flt, update, upsert=upsert)

    async def update_many(self, flt, update, session=None):
        return self._collection.update_many(flt, update)

    async def delete_one(self, flt, session=None):
        return self._collection.delete_one(flt)

    async def delete_many(self, flt, session=None):
        return self._collection.delete_many(flt)

    async def count_documents(self, flt, session=None, **kwargs):
        return self._collection.count_documents(flt, **kwargs)

    async def create_index(self, keys, **kwargs):
        return self._collection.create_index(keys, **kwargs)

    async def bulk_write(self, requests, session=None, **kwargs):
        matched = modified = 0
        for op in requests:
            assert isinstance(op, UpdateOne), "only UpdateOne is used by the service"
            result = self._collection.update_one(op._filter, op._doc, upsert=bool(op._upsert))
            matched += result.matched_count
            modified += result.modified_count
        return BulkWriteResult(matched, modified)


class FakeTransaction:
    """Snapshot every collection on enter; put the snapshot back if the block raises"""

    def __init__(self, database):
        self._database = database
        self._snapshot = {}

    async def __aenter__(self):
        self._snapshot = {
            name: copy.deepcopy(list(self._database[name].find()))
            for name in self._database.list_collection_names()
        }
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            for name in self._database.list_collection_names():
                collection = self._database[name]
                collection.delete_many({})
                if self._snapshot.get(name):
                    collection.insert_many(self._snapshot[name])
        return False


class FakeSession:
    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def start_transaction(self):
        self.client.transactions += 1
        return FakeTransaction(self.client.database)


class FakeClient:
    def __init__(self, database):
        self.database = database
        self.transactions = 0

    async def start_session(self):
        return FakeSession(self)


class AsyncDatabase:
    def __init__(self, database):
        self._database = database
        self._collections = {}
        self.client = FakeClient(database)

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = AsyncCollection(self._database[name])
        return self._collections[name]

# ==================== FIXTURES ====================

@pytest.fixture
def mongo():
    return mongomock.MongoClient().coursehub_test


@pytest.fixture
def db(mongo):
    database = AsyncDatabase(mongo)
    run_sync(create_course_indexes(database))
    run_sync(seed_achievements(database))
    return database


def make_user(mongo, user_id, role, name=None, **extra):
    user = {
        "user_id": user_id,
        "name": name or user_id.title(),
        "email": f"{user_id.lower()}@example.com",
        "role": role,
        "login_streak": 0,
        "last_login": None,
        "earned_achievements": [],
        "is_active": True,
        "created_at": datetime.utcnow(),
        **extra
    }
    mongo.users.insert_one(user)
    return mongo.users.find_one({"user_id": user_id})


@pytest.fixture
def instructor(mongo):
    return make_user(mongo, "USR_INSTRUCTOR", "instructor", "Ada Instructor")


@pytest.fixture
def student(mongo):
    return make_user(mongo, "USR_STUDENT", "student", "Sam Student")


@pytest.fixture
def admin(mongo):
    return make_user(mongo, "USR_ADMIN", "admin", "Alex Admin")


def auth_header(user_id: str) -> dict:
    token = jwt.encode({"sub": user_id}, TEST_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, monkeypatch):
    from coursehub.main import app
    from coursehub.courses.dependencies import get_db

    async def override_get_db():
        return db

    monkeypatch.setattr("coursehub.auth.auth_utils.JWT_SECRET_KEY", TEST_SECRET)
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def lesson_payload(title, lesson_type="text", lesson_id=None, duration=10, **content):
    lesson = {"title": title, "type": lesson_type, "duration": duration, "content": content or None}
    if lesson_id:
        lesson["lesson_id"] = lesson_id
    return lesson


def course_payload(title="Python for Data Science", modules=None, **overrides):
    payload = {
        "title": title,
        "description": "A practical introduction to data analysis with Python, pandas and plotting libraries.",
        "category": "data-science",
        "level": "Beginner",
        "price": 0,
        "modules": modules if modules is not None else [
            {"module_id": "temp_1", "title": "Basics", "lessons": [
                lesson_payload("Welcome", body="Hello"),
                lesson_payload("Setup", "video", url="https://youtu.be/abc", source="youtube"),
            ]}
        ]
    }
    payload.update(overrides)
    return payload
