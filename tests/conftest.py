import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import get_token_verifier
from database import ensure_indexes, get_db
from main import app
from payments import get_payment_gateway
from tests.helpers import FakeGateway, fake_verify


@pytest.fixture()
def db():
    database = mongomock.MongoClient()["contest_hub_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_token_verifier] = lambda: fake_verify
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
