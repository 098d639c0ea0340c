"""
application.py

Application layer for the Procurement Stage Tracker.

Overview
--------
The application layer sits between the presentation layer (API / UI) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data
     the presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that the project row and its
     stage rows are always written in one atomic transaction.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that reload state, call the services, and persist the results in the
     correct order.

Structure
---------
DTOs
    StageCatalogEntryDTO, ProjectDTO, StageDTO, WorkflowStatusDTO,
    ProjectDetailDTO, StageActionResultDTO, DashboardRowDTO, StatisticsDTO

Repository interfaces
    AbstractProjectRepository
    AbstractStageRecordRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Projects ---
    CreateProjectUseCase
    UpdateProjectHeaderUseCase
    DeleteProjectUseCase
    GetProjectUseCase

    --- Stage workflow ---
    ListStageCatalogUseCase
    GetWorkflowStatusUseCase
    ApplyStageActionUseCase

    --- Dashboard ---
    ListProjectsUseCase
    GetStatisticsUseCase

Design notes
------------
- Use cases receive commands and return DTOs; no domain objects cross the
  application boundary.
- Each use case accepts a UnitOfWork as its sole dependency.  The UoW
  exposes all repositories and handles commit/rollback.
- Stage records are always reloaded inside the unit of work before a
  submission is validated; callers never supply workflow state.
- All timestamps flowing out are ISO-8601 strings (UTC).
- Errors bubble up as ApplicationError subclasses or service-layer
  WorkflowError subclasses.
"""

from __future__ import annotations

import abc
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from model import (
    Actor,
    DerivedStatus,
    Project,
    StageAction,
    StageCatalog,
    StageFields,
    StageRecord,
)
from logging_config import log_context
from service import (
    DashboardService,
    ProjectService,
    WorkflowEngine,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class AuthorizationError(ApplicationError):
    """Raised when the acting user lacks the required rights."""


class StorageError(ApplicationError):
    """Raised by repositories when the underlying store fails."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _str_id(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class StageCatalogEntryDTO:
    order: int
    name: str
    short_form: str


@dataclass
class ProjectDTO:
    id: str
    pr_number: str
    project_details: str
    created_by_id: Optional[str]
    created_at: str
    edited_at: Optional[str]
    edited_by_id: Optional[str]
    last_accessed_at: Optional[str]
    last_accessed_by_id: Optional[str]


@dataclass
class StageDTO:
    """One stage row as the edit screen renders it for a given actor."""
    order: int
    stage_name: str
    short_form: str
    created_at: Optional[str]
    approved_at: Optional[str]
    office: str
    remarks: str
    is_submitted: bool
    is_active: bool
    is_locked: bool
    is_last_submitted: bool
    button: str
    editable_fields: List[str] = field(default_factory=list)


@dataclass
class WorkflowStatusDTO:
    project_id: str
    is_finished: bool
    last_submitted_stage: Optional[str]
    current_stage: Optional[str]
    stages: List[StageDTO]


@dataclass
class ProjectDetailDTO:
    project: ProjectDTO
    workflow: WorkflowStatusDTO


@dataclass
class StageActionResultDTO:
    action: str
    stage_name: str
    message: str
    workflow: WorkflowStatusDTO


@dataclass
class DashboardRowDTO:
    id: str
    pr_number: str
    project_details: str
    created_by_id: Optional[str]
    created_at: str
    edited_at: Optional[str]
    status: str
    is_finished: bool


@dataclass
class StatisticsDTO:
    total: int
    finished: int
    ongoing: int
    finished_pct: float
    ongoing_pct: float


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=str(p.id),
            pr_number=p.pr_number,
            project_details=p.project_details,
            created_by_id=_str_id(p.created_by_id),
            created_at=_fmt(p.created_at),
            edited_at=_fmt(p.edited_at),
            edited_by_id=_str_id(p.edited_by_id),
            last_accessed_at=_fmt(p.last_accessed_at),
            last_accessed_by_id=_str_id(p.last_accessed_by_id),
        )

    @staticmethod
    def workflow(
        project_id: uuid.UUID,
        records: List[StageRecord],
        status: DerivedStatus,
        actor: Actor,
    ) -> WorkflowStatusDTO:
        by_name = {r.stage_name: r for r in records}
        stages = []
        for i, state in enumerate(status.stages, start=1):
            r = by_name[state.stage_name]
            stages.append(
                StageDTO(
                    order=i,
                    stage_name=state.stage_name,
                    short_form=state.short_form,
                    created_at=_fmt(r.created_at),
                    approved_at=_fmt(r.approved_at),
                    office=r.office,
                    remarks=r.remarks,
                    is_submitted=state.is_submitted,
                    is_active=state.is_active,
                    is_locked=state.is_locked,
                    is_last_submitted=state.is_last_submitted,
                    button=_engine.button_for(state, actor).value,
                    editable_fields=_engine.editable_fields(state, actor),
                )
            )
        return WorkflowStatusDTO(
            project_id=str(project_id),
            is_finished=status.is_finished,
            last_submitted_stage=status.last_submitted_stage,
            current_stage=status.current_stage,
            stages=stages,
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: uuid.UUID) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    def add(self, project: Project) -> None: ...
    @abc.abstractmethod
    def save(self, project: Project) -> None: ...
    @abc.abstractmethod
    def delete(self, project_id: uuid.UUID) -> None: ...


class AbstractStageRecordRepository(abc.ABC):
    """Stage rows keyed by (project_id, stage_name)."""

    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[StageRecord]: ...
    @abc.abstractmethod
    def save(self, record: StageRecord) -> None:
        """Insert or replace the row with the record's natural key."""
    @abc.abstractmethod
    def delete_for_project(self, project_id: uuid.UUID) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.projects.add(project)
            uow.commit()
    """
    projects: AbstractProjectRepository
    stages: AbstractStageRecordRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_engine = WorkflowEngine()
_project_svc = ProjectService()
_dashboard_svc = DashboardService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _require_admin(actor: Actor, operation: str) -> None:
    if not actor.is_admin:
        raise AuthorizationError(f"Only administrators may {operation}.")


def list_stages(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> List[StageRecord]:
    """
    Exactly eight stage records for a project, in catalog order.
    Missing rows are created (and saved) on the way.
    """
    existing = uow.stages.list_for_project(project_id)
    ordered, created = _project_svc.complete_stage_set(project_id, existing)
    for record in created:
        uow.stages.save(record)
    if created:
        logger.info(
            "Created %d missing stage record(s) for project %s",
            len(created), project_id,
            extra=log_context(project_id=project_id),
        )
    return ordered


def _workflow_dto(
    uow: AbstractUnitOfWork, project_id: uuid.UUID, actor: Actor
) -> WorkflowStatusDTO:
    records = list_stages(uow, project_id)
    status = _engine.compute_status(records)
    return _Assembler.workflow(project_id, records, status, actor)


# ===========================================================================
# USE CASES — PROJECTS
# ===========================================================================

@dataclass
class CreateProjectCommand:
    pr_number: str
    project_details: str
    actor: Actor


class CreateProjectUseCase:
    """
    Create a project together with its eight stage records.
    Purchase Request starts at the creation instant.
    """

    def execute(self, cmd: CreateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDetailDTO:
        with uow:
            project, stages = _project_svc.create_project(
                pr_number=cmd.pr_number,
                project_details=cmd.project_details,
                actor=cmd.actor,
            )
            uow.projects.add(project)
            for record in stages:
                uow.stages.save(record)
            status = _engine.compute_status(stages)
            uow.commit()
            logger.info(
                "Project %s (PR %s) created by %s", project.id, project.pr_number, cmd.actor.id,
                extra=log_context(project_id=project.id, actor_id=cmd.actor.id),
            )
            return ProjectDetailDTO(
                project=_Assembler.project(project),
                workflow=_Assembler.workflow(project.id, stages, status, cmd.actor),
            )


@dataclass
class UpdateProjectHeaderCommand:
    project_id: uuid.UUID
    pr_number: str
    project_details: str
    actor: Actor


class UpdateProjectHeaderUseCase:
    def execute(self, cmd: UpdateProjectHeaderCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        _require_admin(cmd.actor, "edit project details")
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            project = _project_svc.update_header(
                project,
                pr_number=cmd.pr_number,
                project_details=cmd.project_details,
                actor=cmd.actor,
            )
            uow.projects.save(project)
            uow.commit()
            logger.info(
                "Project %s header edited by %s", project.id, cmd.actor.id,
                extra=log_context(project_id=project.id, actor_id=cmd.actor.id),
            )
            return _Assembler.project(project)


@dataclass
class DeleteProjectCommand:
    project_id: uuid.UUID
    actor: Actor


class DeleteProjectUseCase:
    """Remove a project and all of its stage records in one transaction."""

    def execute(self, cmd: DeleteProjectCommand, uow: AbstractUnitOfWork) -> None:
        _require_admin(cmd.actor, "delete projects")
        with uow:
            _get_project_or_raise(uow, cmd.project_id)
            uow.stages.delete_for_project(cmd.project_id)
            uow.projects.delete(cmd.project_id)
            uow.commit()
            logger.info(
                "Project %s deleted by %s", cmd.project_id, cmd.actor.id,
                extra=log_context(project_id=cmd.project_id, actor_id=cmd.actor.id),
            )


class GetProjectUseCase:
    def execute(
        self, project_id: uuid.UUID, actor: Actor, uow: AbstractUnitOfWork
    ) -> ProjectDetailDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            workflow = _workflow_dto(uow, project_id, actor)
            uow.commit()
            return ProjectDetailDTO(project=_Assembler.project(project), workflow=workflow)


# ===========================================================================
# USE CASES — STAGE WORKFLOW
# ===========================================================================

class ListStageCatalogUseCase:
    def execute(self) -> List[StageCatalogEntryDTO]:
        return [
            StageCatalogEntryDTO(order=i, name=name, short_form=StageCatalog.short_form(name))
            for i, name in enumerate(StageCatalog.names(), start=1)
        ]


class GetWorkflowStatusUseCase:
    def execute(
        self, project_id: uuid.UUID, actor: Actor, uow: AbstractUnitOfWork
    ) -> WorkflowStatusDTO:
        with uow:
            _get_project_or_raise(uow, project_id)
            workflow = _workflow_dto(uow, project_id, actor)
            uow.commit()
            return workflow


@dataclass
class ApplyStageActionCommand:
    project_id: uuid.UUID
    stage_name: str
    actor: Actor
    fields: StageFields = field(default_factory=StageFields)


class ApplyStageActionUseCase:
    """
    Submit or unsubmit a stage.  The direction is inferred from the stored
    state: an admin posting on the last submitted stage unsubmits it,
    any other post on an open stage submits it.

    The successor's start time is stamped as part of a submission; a
    storage failure on that write alone is logged and the submission
    stands.
    """

    def execute(
        self, cmd: ApplyStageActionCommand, uow: AbstractUnitOfWork
    ) -> StageActionResultDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            records = list_stages(uow, cmd.project_id)
            try:
                outcome = _engine.plan_action(
                    records, cmd.stage_name, cmd.actor, cmd.fields
                )
            except ValueError as exc:
                logger.warning(
                    "Rejected action on stage '%s' of project %s by %s: %s",
                    cmd.stage_name, cmd.project_id, cmd.actor.id, exc,
                    extra=log_context(
                        project_id=cmd.project_id, stage_name=cmd.stage_name, actor_id=cmd.actor.id,
                    ),
                )
                raise

            uow.stages.save(outcome.record)
            if outcome.cascade is not None:
                try:
                    uow.stages.save(outcome.cascade)
                except StorageError:
                    logger.error(
                        "Could not stamp start time of stage '%s' for project %s",
                        outcome.cascade.stage_name, cmd.project_id,
                        exc_info=True,
                        extra=log_context(
                            project_id=cmd.project_id, stage_name=outcome.cascade.stage_name,
                        ),
                    )

            project = _project_svc.touch_last_accessed(project, cmd.actor)
            uow.projects.save(project)
            workflow = _workflow_dto(uow, cmd.project_id, cmd.actor)
            uow.commit()

            verb = "submitted" if outcome.action is StageAction.SUBMIT else "unsubmitted"
            logger.info(
                "Stage '%s' of project %s %s by %s",
                cmd.stage_name, cmd.project_id, verb, cmd.actor.id,
                extra=log_context(
                    project_id=cmd.project_id, stage_name=cmd.stage_name,
                    action=outcome.action.value, actor_id=cmd.actor.id,
                ),
            )
            return StageActionResultDTO(
                action=outcome.action.value,
                stage_name=cmd.stage_name,
                message=f"Stage '{cmd.stage_name}' {verb} successfully.",
                workflow=workflow,
            )


# ===========================================================================
# USE CASES — DASHBOARD
# ===========================================================================

def _dashboard_rows(uow: AbstractUnitOfWork, search: Optional[str]) -> List[DashboardRowDTO]:
    projects = [p for p in uow.projects.list_all() if _dashboard_svc.matches(p, search)]
    rows = []
    for p in _dashboard_svc.order_projects(projects):
        records = uow.stages.list_for_project(p.id)
        status = _engine.compute_status(records) if records else None
        rows.append(
            DashboardRowDTO(
                id=str(p.id),
                pr_number=p.pr_number,
                project_details=p.project_details,
                created_by_id=_str_id(p.created_by_id),
                created_at=_fmt(p.created_at),
                edited_at=_fmt(p.edited_at),
                status=_dashboard_svc.status_label(status),
                is_finished=bool(status and status.is_finished),
            )
        )
    return rows


class ListProjectsUseCase:
    def execute(
        self, uow: AbstractUnitOfWork, search: Optional[str] = None
    ) -> List[DashboardRowDTO]:
        with uow:
            return _dashboard_rows(uow, search)


class GetStatisticsUseCase:
    def execute(
        self, uow: AbstractUnitOfWork, search: Optional[str] = None
    ) -> StatisticsDTO:
        with uow:
            rows = _dashboard_rows(uow, search)
        stats = _dashboard_svc.statistics([r.is_finished for r in rows])
        return StatisticsDTO(
            total=stats.total,
            finished=stats.finished,
            ongoing=stats.ongoing,
            finished_pct=stats.finished_pct,
            ongoing_pct=stats.ongoing_pct,
        )
