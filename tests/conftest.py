"""Shared fixtures: an in-memory MongoDB and helpers to seed ideas."""

import uuid
from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from access import ANONYMOUS, Identity
from database import IDEAS, get_db
from schemas import Idea

BASE_TIME = datetime(2025, 11, 1, 12, 0, 0)


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    name = f"ideahub_test_{uuid.uuid4().hex}"
    yield client[name]
    client.drop_database(name)


@pytest.fixture
def guest() -> Identity:
    return ANONYMOUS


@pytest.fixture
def member() -> Identity:
    return Identity(user_id="user-1")


@pytest.fixture
def make_idea(db):
    """Insert an idea; ``age_days`` pushes ``created_at`` into the past."""
    created = []

    def _make(title="AI Study Buddy", age_days=0, **overrides):
        fields = {
            "title": title,
            "description": "An assistant that quizzes students on their notes",
            "category": "Education",
            "difficulty": "Beginner",
            "tools": ["Claude", "Bolt"],
            "tags": ["learning", "quiz"],
            "free_tier": False,
        }
        fields.update(overrides)
        when = BASE_TIME - timedelta(days=age_days, seconds=len(created))
        doc = {**Idea(**fields).model_dump(), "created_at": when, "updated_at": when}
        doc["_id"] = db[IDEAS].insert_one(doc).inserted_id
        created.append(doc)
        return doc

    return _make


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def counter(db):
    """Read a stored counter of an idea."""

    def _read(idea, field="comment_count"):
        return db[IDEAS].find_one({"_id": idea["_id"]})[field]

    return _read
