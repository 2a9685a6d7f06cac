import os

# Cheap hashes for the suite; production default is 10 rounds
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth_service import AuthService
from comment_service import CommentService
from database import get_db
from main import app
from schemas import Question
from test_service import TestService
from user_service import UserService

QUESTIONS = [
    {"question": "2 + 2?", "options": ["3", "4"], "correct": 1},
    {"question": "Capital of France?", "options": ["Paris", "Rome", "Oslo"], "correct": 0},
]


@pytest.fixture
def db():
    """A fresh in-memory database for each test."""
    return mongomock.MongoClient()["quizly_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth(db):
    return AuthService(db)


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def comments(db):
    return CommentService(db)


@pytest.fixture
def tests_service(db):
    return TestService(db)


@pytest.fixture
def make_user(auth):
    def _make(name: str, password: str = "secret"):
        return auth.register(name, f"{name}@mail.com", password)
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def quiz(tests_service, alice):
    return tests_service.create_test(
        alice["_id"], "Basics", "warm-up", [Question(**q) for q in QUESTIONS]
    )
