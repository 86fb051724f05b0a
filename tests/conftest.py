import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["GEO_LOOKUP_URL"] = ""

import pytest
from fastapi.testclient import TestClient

from snaplink import auth, crud, database, geo, models
from snaplink.main import create_app

KNOWN_LOCATIONS = {
    "203.0.113.5": geo.GeoResult(country="US", city="Boston"),
    "198.51.100.7": geo.GeoResult(country="DE", city="Berlin"),
}


def fake_geo_lookup(ip):
    return KNOWN_LOCATIONS.get(ip, geo.UNKNOWN)


@pytest.fixture
def engine(tmp_path):
    engine = database.build_engine(f"sqlite:///{tmp_path / 'snaplink_test.db'}")
    database.init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return database.make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(username="alice", email=None, password="secret123", is_admin=False) -> models.User:
        user = crud.create_user(db, username, email or f"{username}@example.com", auth.hash_password(password))
        if is_admin:
            user = crud.set_admin(db, user.email)
        return user
    return _make


@pytest.fixture
def client(session_factory):
    app = create_app(session_factory=session_factory, geo_lookup=fake_geo_lookup)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def signup(client):
    def _signup(username="alice", password="secret123") -> dict:
        res = client.post(
            "/api/auth/signup",
            json={"username": username, "email": f"{username}@example.com", "password": password},
        )
        assert res.status_code == 201, res.text
        body = res.json()
        return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}}
    return _signup
