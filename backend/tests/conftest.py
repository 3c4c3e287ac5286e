import asyncio
import os
import tempfile

# Must be set before the app (and its engine) is imported
_db_dir = tempfile.mkdtemp(prefix="briefcase-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["LOG_FILE"] = ""
os.environ["MQTT_ENABLED"] = "false"
os.environ["DEVICE_SHARED_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.database import init_db, drop_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    asyncio.run(drop_db())


@pytest.fixture
def db_tables():
    asyncio.run(init_db())
    yield
    asyncio.run(drop_db())


@pytest.fixture
def zone_at_origin(client):
    """center=(0,0), radius=0.01°, drift threshold=0.005°"""
    response = client.post("/api/gps/settings", json={
        "safe_zone_radius": 0.01,
        "gps_drift_threshold": 0.005,
        "center_latitude": 0.0,
        "center_longitude": 0.0,
    })
    assert response.status_code == 200
    return client
