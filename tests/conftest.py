"""Shared fixtures: in-memory SQLite database, seeded directory and API client."""
import os

# Must be set before trialrisk_core.database builds its engine
os.environ.setdefault("TRIALRISK_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trialrisk_core import models
from trialrisk_core.config import Settings
from trialrisk_core.database import get_db
from trialrisk_core.directory import SqlUserDirectory


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
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://")


@pytest.fixture
def directory(db):
    return SqlUserDirectory(db)


@pytest.fixture
def trial(db):
    trial = models.Trial(protocol_id="PRO-001", title="Phase II Hepatic Safety Study")
    db.add(trial)
    db.commit()
    db.refresh(trial)
    return trial


@pytest.fixture
def make_user(db):
    """Factory for directory users."""
    counter = {"n": 0}

    def _make_user(role: str, study_access=None, status: str = "active", username: str = None):
        counter["n"] += 1
        name = username or f"user{counter['n']}"
        user = models.User(
            username=name,
            full_name=name.title(),
            email=f"{name}@example.org",
            role=role,
            status=status,
            study_access=study_access,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_rule(db, trial):
    """Factory for persisted threshold rules on the default trial."""

    def _make_rule(metric_name: str, low=40.0, medium=80.0, high=120.0, critical=200.0, **kwargs):
        rule = models.ThresholdRule(
            trial_id=trial.id,
            metric_name=metric_name,
            low=low,
            medium=medium,
            high=high,
            critical=critical,
            **kwargs,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _make_rule


@pytest.fixture
def make_task(db, trial):
    """Factory for persisted tasks on the default trial."""
    counter = {"n": 0}

    def _make_task(assigned_to: str = "EDC Data Manager", priority=models.TaskPriority.HIGH, **kwargs):
        counter["n"] += 1
        task = models.Task(
            task_id=kwargs.pop("task_id", f"HIGH_{counter['n']:08X}"),
            title=kwargs.pop("title", f"Test task {counter['n']}"),
            description=kwargs.pop("description", "Check the record"),
            priority=priority,
            status=kwargs.pop("status", models.TaskStatus.NOT_STARTED),
            trial_id=trial.id,
            assigned_to=assigned_to,
            created_by="tester",
            **kwargs,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make_task


@pytest.fixture
def client(session_factory):
    from trialrisk_core.api.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
