import uuid

import pytest

from infrastructure import InMemoryUnitOfWork
from model import Project, StageCatalog, StageRecord


def test_entities_are_copied_on_read(db):
    project = Project(pr_number="PR-1", project_details="x")
    with InMemoryUnitOfWork(db) as uow:
        uow.projects.add(project)
        uow.commit()

    with InMemoryUnitOfWork(db) as uow:
        loaded = uow.projects.get(project.id)
        loaded.pr_number = "changed"
        assert uow.projects.get(project.id).pr_number == "PR-1"


def test_exception_rolls_back_uncommitted_writes(db):
    project = Project(pr_number="PR-1", project_details="x")
    with pytest.raises(RuntimeError):
        with InMemoryUnitOfWork(db) as uow:
            uow.projects.add(project)
            raise RuntimeError("boom")
    assert len(db.projects) == 0


def test_committed_writes_survive_a_later_failure(db):
    first = Project(pr_number="PR-1", project_details="x")
    second = Project(pr_number="PR-2", project_details="y")
    with pytest.raises(RuntimeError):
        with InMemoryUnitOfWork(db) as uow:
            uow.projects.add(first)
            uow.commit()
            uow.projects.add(second)
            raise RuntimeError("boom")
    assert set(db.projects) == {first.id}


def test_stage_records_listed_in_catalog_order(db):
    pid = uuid.uuid4()
    with InMemoryUnitOfWork(db) as uow:
        for name in reversed(StageCatalog.names()):
            uow.stages.save(StageRecord(project_id=pid, stage_name=name))
        uow.stages.save(StageRecord(project_id=uuid.uuid4(), stage_name=StageCatalog.FIRST))
        listed = uow.stages.list_for_project(pid)
    assert [r.stage_name for r in listed] == list(StageCatalog.names())


def test_save_replaces_row_with_same_key(db):
    pid = uuid.uuid4()
    with InMemoryUnitOfWork(db) as uow:
        uow.stages.save(StageRecord(project_id=pid, stage_name=StageCatalog.FIRST))
        uow.stages.save(StageRecord(project_id=pid, stage_name=StageCatalog.FIRST, office="BAC"))
    assert len(db.stages) == 1
    assert db.stages[(pid, StageCatalog.FIRST)].office == "BAC"


def test_delete_for_project_leaves_other_projects(db):
    keep, drop = uuid.uuid4(), uuid.uuid4()
    with InMemoryUnitOfWork(db) as uow:
        for pid in (keep, drop):
            for name in StageCatalog.names():
                uow.stages.save(StageRecord(project_id=pid, stage_name=name))
        uow.stages.delete_for_project(drop)
    assert {k[0] for k in db.stages} == {keep}
