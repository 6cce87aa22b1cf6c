import mongomock
import pytest
from fastapi.testclient import TestClient

from database import MongoRecordStore
from main import app
from schemas import User


@pytest.fixture
def store():
    return MongoRecordStore(mongomock.MongoClient(), "budgeting_test")


@pytest.fixture
def user(store):
    return store.create_user(User(name="Test User", email="budget-test@example.com"))


@pytest.fixture
def other_user(store):
    return store.create_user(User(name="Other User", email="other@example.com"))


@pytest.fixture
def client(store):
    app.state.store = store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.store = None


@pytest.fixture
def headers(user):
    return {"x-user-id": user.id}
