from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.roster import create_app
from app.roster import auth
from app.roster.db import session_scope
from app.roster.models import Base, Person, Role
from app.roster.modules.groups.service import create_group
from app.roster.utils import utcnow


def _person(s, first_name, last_name, email, password="pw"):
    now = utcnow()
    p = Person(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=generate_password_hash(password) if password else None,
        created_at=now,
        updated_at=now,
    )
    s.add(p)
    s.flush()
    return p


def _role(s, person, group, type_key, **kwargs):
    r = Role(type=type_key, group=group, created_at=kwargs.pop("created_at", utcnow()), **kwargs)
    person.roles.append(r)
    if person.primary_group_id is None:
        person.primary_group = group
    s.flush()
    return r


def seed(s) -> SimpleNamespace:
    """
    Federation (top_layer)
      Board (top_group)
      Region North (bottom_layer)
        North A (bottom_group)
          North A1 (bottom_group)
      Region South (bottom_layer)
        South A (bottom_group)
    """
    top_layer = create_group(s, type_key="top_layer", name="Federation")
    top_group = create_group(s, type_key="top_group", name="Board", parent=top_layer)
    north = create_group(s, type_key="bottom_layer", name="Region North", parent=top_layer)
    north_a = create_group(s, type_key="bottom_group", name="North A", parent=north)
    north_a1 = create_group(s, type_key="bottom_group", name="North A1", parent=north_a)
    south = create_group(s, type_key="bottom_layer", name="Region South", parent=top_layer)
    south_a = create_group(s, type_key="bottom_group", name="South A", parent=south)

    root = _person(s, "Root", None, "root@example.org")
    _role(s, root, top_layer, "top_layer.administrator")
    top_leader = _person(s, "Tom", "Leader", "top_leader@example.com")
    _role(s, top_leader, top_group, "top_group.leader")
    bottom_member = _person(s, "Bea", "Member", "bottom_member@example.com")
    _role(s, bottom_member, north, "bottom_layer.member")
    north_leader = _person(s, "Nina", "North", "north_leader@example.com")
    _role(s, north_leader, north_a, "bottom_group.leader")

    return SimpleNamespace(
        top_layer=top_layer.id,
        top_group=top_group.id,
        north=north.id,
        north_a=north_a.id,
        north_a1=north_a1.id,
        south=south.id,
        south_a=south_a.id,
        root=root.id,
        top_leader=top_leader.id,
        bottom_member=bottom_member.id,
        north_leader=north_leader.id,
    )


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("ROOT_EMAIL", "root@example.org")
    monkeypatch.setenv("SELF_REGISTRATION_ENABLED", "1")
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        app.config["TEST_IDS"] = seed(s)
    return app


@pytest.fixture()
def ids(app):
    return app.config["TEST_IDS"]


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def outbox(app):
    return app.extensions["mailer"].outbox


@pytest.fixture()
def login(client):
    def _login(email="top_leader@example.com", password="pw"):
        r = client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)
        assert r.status_code == 302
        return r

    return _login


@pytest.fixture()
def db(app):
    """Short-lived session for assertions and extra fixtures (commits on exit)."""

    def _db():
        return session_scope(app)

    return _db
