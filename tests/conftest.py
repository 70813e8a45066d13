"""
Pytest configuration and shared fixtures for the tracker tests.

MongoDB is replaced by an in-memory mongomock database patched into
`database.db`, so the app and the services see the same store.
"""

import os

os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SMTP_HOST", None)

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from realtime import rooms
from security import hash_password, issue_token

PASSWORD = "secret123"


@pytest.fixture
def db(monkeypatch):
    """Fresh in-memory database for each test."""
    test_db = mongomock.MongoClient()["tracker_test"]
    database.ensure_indexes(test_db)
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture(autouse=True)
def empty_rooms():
    rooms.connections.clear()
    rooms.rooms.clear()
    yield
    rooms.connections.clear()
    rooms.rooms.clear()


@pytest.fixture
def client(db):
    from main import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    """Insert a user directly and return its document plus an auth header."""
    def _make_user(name, email=None, confirmed=True):
        email = email or f"{name.lower()}@example.com"
        user_id = database.create_document(db, "user", {
            "name": name,
            "email": email,
            "password_hash": hash_password(PASSWORD),
            "confirmed": confirmed,
            "token": None,
        })
        user = db["user"].find_one({"_id": user_id})
        user["headers"] = {"Authorization": f"Bearer {issue_token(user_id)}"}
        return user
    return _make_user


@pytest.fixture
def creator(make_user):
    return make_user("Carla")


@pytest.fixture
def collaborator(make_user):
    return make_user("Bruno")


@pytest.fixture
def stranger(make_user):
    return make_user("Xavi")


@pytest.fixture
def project_fields():
    return {
        "name": "Website",
        "description": "Company website relaunch",
        "deadline": datetime(2026, 12, 1, tzinfo=timezone.utc),
        "client": "ACME",
    }


@pytest.fixture
def task_fields():
    return {
        "name": "Design",
        "description": "Landing page mockups",
        "deadline": datetime(2026, 11, 1, tzinfo=timezone.utc),
        "priority": "High",
    }


@pytest.fixture
def website(db, creator, collaborator, project_fields):
    """Project owned by `creator` with `collaborator` already added."""
    import projects
    from schemas import ProjectCreate

    project = projects.create_project(db, creator["_id"], ProjectCreate(**project_fields))
    projects.add_collaborator(db, project["_id"], creator["_id"], collaborator["email"])
    return db["project"].find_one({"_id": project["_id"]})


@pytest.fixture
def design(db, website, creator, task_fields):
    import tasks
    from schemas import TaskCreate

    return tasks.create_task(
        db, website["_id"], creator["_id"], TaskCreate(project=str(website["_id"]), **task_fields)
    )
