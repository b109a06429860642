"""Shared fixtures: in-memory SQLite database, recording collaborators, API client."""
import os

# Settings are read once at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskboard_core import models, organizations, projects
from taskboard_core.api.dependencies import get_event_publisher, get_mailer
from taskboard_core.api.main import app
from taskboard_core.database import get_db
from taskboard_core.integrations import InMemoryPublisher, MailSender


class RecordingMailSender(MailSender):
    """Keeps every message instead of sending it."""

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append((to, subject, html))

    def subjects_for(self, to):
        return [subject for recipient, subject, _ in self.sent if recipient == to]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    yield engine
    models.Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def mailer():
    return RecordingMailSender()


@pytest.fixture
def make_user(db):
    """Factory creating an active user; the name doubles as the email local part."""

    def _make_user(name, first_name=None, last_name="Tester", is_active=True):
        user = models.User(
            email=f"{name}@example.com",
            first_name=first_name or name.capitalize(),
            last_name=last_name,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def owner(make_user):
    return make_user("owner")


@pytest.fixture
def organization(db, owner):
    return organizations.create(db, owner.id, "Acme Corp")


@pytest.fixture
def project(db, owner, organization):
    return projects.create(db, owner.id, organization.id, "web", "Website")


@pytest.fixture
def add_org_member(db, owner, organization):
    """Add a user to the shared organization with the given role."""

    def _add(user, role=models.OrganizationRole.MEMBER):
        return organizations.add_member(db, owner.id, organization.id, user.id, role)

    return _add


@pytest.fixture
def add_project_member(db, owner, project, add_org_member):
    """Add a user to the shared project (and its organization) with the given role."""

    def _add(user, role=models.ProjectRole.MEMBER):
        add_org_member(user)
        kind, member = projects.add_member(db, owner.id, project.id, user.email, role)
        assert kind == "member"
        return member

    return _add


@pytest.fixture
def client(session_factory, publisher, mailer):
    """HTTP test client with overridden database and collaborators"""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

