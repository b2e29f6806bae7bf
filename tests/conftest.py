import os
from pathlib import Path

# Must be set before any project module reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-for-the-ability-api-0123456789"
os.environ["ENVIRONMENT"] = "test"
os.environ["ABILITY_CACHE_TTL"] = "60"
os.environ["ROLE_SEED_PATH"] = str(Path(__file__).resolve().parent.parent / "configs" / "roles" / "default.yaml")

import pytest
from fastapi.testclient import TestClient

from apps.api.main import create_app
from auth.auth_manager import auth_manager
from auth.cache_manager import ability_cache
from auth.models import Base, get_engine, init_database


@pytest.fixture
def database():
    init_database()
    yield
    Base.metadata.drop_all(get_engine())
    ability_cache.clear()


@pytest.fixture
def app(database):
    return create_app()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_actor(database):
    """Create a user (optionally with a role) and return (user_id, headers)."""
    counter = {"n": 0}

    def _make(role_name=None, email=None, name="Test User"):
        counter["n"] += 1
        email = email or f"actor{counter['n']}@example.com"
        result = auth_manager.create_user(email=email, name=name, role_name=role_name)
        assert result.get("success"), result
        user_id = result["user_id"]
        token = auth_manager.issue_token(user_id, email)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make
