import pytest
from fastapi.testclient import TestClient

from tutorspool.database import get_db
from tutorspool.main import app
from tutorspool.services.dependencies import get_clock, get_meeting_client


@pytest.fixture
def client(db, clock, meeting_client):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_meeting_client] = lambda: meeting_client
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
