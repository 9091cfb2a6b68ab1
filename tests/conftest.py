"""Shared fixtures: in-memory database, users, config and a recording notifier."""

from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from services.mandate import models  # noqa: F401
from services.mandate.config import MandateConfig
from services.mandate.models import ADMIN, AGENT, User
from services.notification import models as notification_models  # noqa: F401

# 10 mars 2025, 09:00 UTC (10:00 à Paris)
T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    """Collects send() calls; recipients listed in `failing` raise instead."""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    def send(self, recipient, template, params):
        if recipient in self.failing:
            raise ConnectionError(f"broker unavailable for {recipient}")
        self.sent.append((recipient, template, params))
        return f"msg-{len(self.sent)}"

    def templates(self):
        return [t for _, t, _ in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def config():
    return MandateConfig(local_tz="Europe/Paris", start_seq=460, batch=100)


@pytest.fixture
def notifier():
    return RecordingNotifier()


def _user(session, email, role, first_name=None):
    user = User(email=email, role=role, first_name=first_name)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def agent(session):
    return _user(session, "agent@example.com", AGENT, "Alice")


@pytest.fixture
def other_agent(session):
    return _user(session, "bob@example.com", AGENT, "Bob")


@pytest.fixture
def admin(session):
    return _user(session, "admin@example.com", ADMIN)
