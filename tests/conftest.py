import os

# Must be set before config is imported
os.environ.setdefault("JWT_SECRET", "test-secret-for-the-school-feedback-suite")

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

import config
from main import create_app


def make_token(uid, **claims):
    payload = {"sub": uid, **claims}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database per test."""
    return mongomock.MongoClient()["school_feedback_test"]


@pytest.fixture
def client(db):
    """Test client whose lifespan seeds schools and creates indexes."""
    app = create_app(db)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    def _headers(uid):
        return {"Authorization": f"Bearer {make_token(uid)}"}
    return _headers


@pytest.fixture
def sample_post():
    return {
        "schoolName": "School No. 1",
        "title": "Great teachers",
        "feedback": "The math department is excellent.",
        "rating": 5,
        "postAnonymously": False,
    }


@pytest.fixture
def create_post(client, auth_headers, sample_post):
    """Create a post through the API and return its id."""
    def _create(uid="alice", **overrides):
        resp = client.post("/api/posts", json={**sample_post, **overrides}, headers=auth_headers(uid))
        assert resp.status_code == 201, resp.text
        return resp.json()["postId"]
    return _create
