"""
Shared pytest fixtures for the Procurement Stage Tracker test suite.

Provides:
    - db: a fresh InMemoryDatabase per test
    - uow: a unit of work bound to that database
    - admin / staff: actors with and without admin rights
    - project: a project created through CreateProjectUseCase
    - client: FastAPI TestClient with get_uow bound to the test database
    - submit: helper posting a valid submission through the use case
    - rows: stored stage records of a project, keyed by stage name
    - fresh_settings (autouse): drops cached settings after each test
"""

import os
import uuid

os.environ.setdefault("APP_ENV", "testing")

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow
from config import get_settings
from application import (
    ApplyStageActionCommand,
    ApplyStageActionUseCase,
    CreateProjectCommand,
    CreateProjectUseCase,
)
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import Actor, StageFields


VALID_FIELDS = dict(approved_at="2024-01-01T10:00", office="BAC", remark="ok")


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def uow(db):
    return InMemoryUnitOfWork(db)


@pytest.fixture
def admin():
    return Actor(id=uuid.uuid4(), is_admin=True)


@pytest.fixture
def staff():
    return Actor(id=uuid.uuid4(), is_admin=False)


@pytest.fixture
def project(db, staff):
    cmd = CreateProjectCommand(
        pr_number="PR-2024-001",
        project_details="Office supplies for Q1",
        actor=staff,
    )
    return CreateProjectUseCase().execute(cmd, InMemoryUnitOfWork(db))


@pytest.fixture
def submit(db):
    """Post on a stage; admins also send a Created value unless told otherwise."""

    def _submit(project_id, stage_name, actor, **overrides):
        values = dict(VALID_FIELDS)
        if actor.is_admin:
            values["created_at"] = "2023-12-31T08:00"
        values.update(overrides)
        cmd = ApplyStageActionCommand(
            project_id=uuid.UUID(str(project_id)),
            stage_name=stage_name,
            actor=actor,
            fields=StageFields(**values),
        )
        return ApplyStageActionUseCase().execute(cmd, InMemoryUnitOfWork(db))

    return _submit


@pytest.fixture
def client(db):
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def rows(db):
    """Stored stage records of a project, keyed by stage name."""

    def _rows(project_id):
        pid = uuid.UUID(str(project_id))
        return {r.stage_name: r for r in db.stages.values() if r.project_id == pid}

    return _rows


@pytest.fixture(autouse=True)
def fresh_settings():
    yield
    get_settings.cache_clear()
