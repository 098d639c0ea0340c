"""
infrastructure.py

In-memory implementation of the repository interfaces and the Unit of Work.

This is a self-contained, zero-dependency backend that stores everything in
plain Python dicts: projects keyed by UUID, stage records keyed by
(project_id, stage_name).  It is suitable for local development, demos, and
integration testing without needing a real database.

Transactions
------------
A unit of work holds the database lock for the whole `with` block, so
requests touching the same project are serialised.  The stores are
snapshotted on entry and after every commit; rollback restores the last
snapshot.  Repositories hand out copies of stored entities, so nothing a
use case mutates reaches the store until it is explicitly saved.

To swap in a real database later, implement the same Abstract* interfaces
from application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: SqlUnitOfWork(session)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

import copy
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from application import (
    AbstractProjectRepository,
    AbstractStageRecordRepository,
    AbstractUnitOfWork,
)
from model import Project, StageCatalog, StageRecord


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with copy-on-read / copy-on-write helpers."""

    def fetch(self, key):
        obj = self.get(key)
        return copy.copy(obj) if obj is not None else None

    def put(self, key, obj) -> None:
        self[key] = copy.copy(obj)

    def remove(self, key) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return [copy.copy(obj) for obj in self.values()]


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.projects: _Store = _Store()
        self.stages:   _Store = _Store()
        self.lock = threading.RLock()

    def snapshot(self) -> Tuple[dict, dict]:
        # Stored entities are never mutated in place, so shallow copies suffice.
        return dict(self.projects), dict(self.stages)

    def restore(self, snapshot: Tuple[dict, dict]) -> None:
        projects, stages = snapshot
        self.projects.clear()
        self.projects.update(projects)
        self.stages.clear()
        self.stages.update(stages)


# Module-level singleton, shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class InMemoryProjectRepository(AbstractProjectRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, project_id):        return self._s.fetch(project_id)
    def list_all(self):               return self._s.all()
    def add(self, project):           self._s.put(project.id, project)
    def save(self, project):          self._s.put(project.id, project)
    def delete(self, project_id):     self._s.remove(project_id)


class InMemoryStageRecordRepository(AbstractStageRecordRepository):
    def __init__(self, store: _Store): self._s = store

    def list_for_project(self, project_id: uuid.UUID) -> List[StageRecord]:
        records = [r for r in self._s.all() if r.project_id == project_id]
        return sorted(
            records,
            key=lambda r: StageCatalog.index_of(r.stage_name)
            if StageCatalog.contains(r.stage_name) else StageCatalog.size(),
        )

    def save(self, record: StageRecord) -> None:
        self._s.put(record.key, record)

    def delete_for_project(self, project_id: uuid.UUID) -> None:
        for key in [k for k in self._s if k[0] == project_id]:
            self._s.remove(key)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps the in-memory repositories in a lock-guarded, snapshot-based
    transaction.  commit() keeps the current state; rollback() restores
    the state as of entry or the last commit.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        self._db = db
        self._snapshot: Optional[Tuple[Dict, Dict]] = None
        self.projects = InMemoryProjectRepository(db.projects)
        self.stages   = InMemoryStageRecordRepository(db.stages)

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._db.lock.acquire()
        self._snapshot = self._db.snapshot()
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._snapshot = None
            self._db.lock.release()

    def commit(self) -> None:
        self._snapshot = self._db.snapshot()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._db.restore(self._snapshot)
