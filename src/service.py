"""
service.py

Service layer for the Procurement Stage Tracker.

Responsibilities
----------------
Each service class encapsulates the business logic for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here; callers load records through the
repositories, hand them to a service, and store whatever comes back.

Services
--------
- WorkflowEngine     – derived stage status, submit/unsubmit decision,
                       validation and the records a stage action produces
- ProjectService     – project creation, header edits, last-accessed stamps
- DashboardService   – dashboard status labels, search and statistics

Design notes
------------
- All mutating methods accept the acting user and an explicit `now`, and
  return new or mutated objects for the caller to persist.
- UTC datetimes are used throughout; naive timestamps from forms are
  interpreted as UTC.
- Business rule violations raise a WorkflowError subclass (a ValueError)
  with a user-facing message.
- The workflow engine never reads session state: the acting user is an
  explicit Actor argument.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from model import (
    Actor,
    DerivedStatus,
    Project,
    StageAction,
    StageButton,
    StageCatalog,
    StageFields,
    StageRecord,
    StageState,
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class WorkflowError(ValueError):
    """Base class for stage workflow rule violations."""


class InvalidStageError(WorkflowError):
    """Raised when a stage name is not part of the stage catalog."""

    def __init__(self, stage_name: str):
        super().__init__(f"Unknown stage '{stage_name}'.")
        self.stage_name = stage_name


class ActionNotAllowedError(WorkflowError):
    """Raised when a submit/unsubmit is inconsistent with the current stage state."""


class ValidationFailedError(WorkflowError):
    """Raised when required fields are missing or malformed."""

    def __init__(self, message: str, fields: Sequence[str] = ()):
        super().__init__(message)
        self.fields = list(fields)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _parse_timestamp(raw: str, field_name: str) -> datetime:
    """
    Parse a form timestamp ("2024-01-01T10:00", "2024-01-01 10:00:00", ...)
    into a tz-aware UTC datetime with second precision.
    """
    text = raw.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationFailedError(
            f"'{raw}' is not a valid timestamp.", [field_name]
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=0)


def _require_stage(stage_name: str) -> None:
    if not StageCatalog.contains(stage_name):
        raise InvalidStageError(stage_name)


def _by_name(records: Iterable[StageRecord]) -> Dict[str, StageRecord]:
    return {r.stage_name: r for r in records}


# ---------------------------------------------------------------------------
# WorkflowEngine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageActionOutcome:
    """
    The writes a stage action requires.

    `record` is the updated target stage; `cascade` is the successor stage
    with its start time pre-stamped, or None when nothing cascades.
    """
    action: StageAction
    record: StageRecord
    cascade: Optional[StageRecord] = None


class WorkflowEngine:
    """
    Rules governing how a project moves through the eight catalog stages.

    Every method is pure: records go in, derived values or planned writes
    come out.  Submitted stages always form a prefix of the catalog order.
    """

    EDITABLE_ON_SUBMIT = ("approved_at", "office", "remark")

    # --- Derived status -----------------------------------------------------

    def compute_status(self, records: Iterable[StageRecord]) -> DerivedStatus:
        by_name = _by_name(records)
        submitted = [
            name for name in StageCatalog.names()
            if by_name.get(name) is not None and by_name[name].is_submitted
        ]
        last_submitted = submitted[-1] if submitted else None

        states: List[StageState] = []
        prev_submitted = True   # the first stage has no predecessor
        current_stage: Optional[str] = None
        for name in StageCatalog.names():
            record = by_name.get(name)
            is_submitted = bool(record and record.is_submitted)
            if not is_submitted and current_stage is None:
                current_stage = name
            states.append(
                StageState(
                    stage_name=name,
                    short_form=StageCatalog.short_form(name),
                    is_submitted=is_submitted,
                    is_active=not is_submitted and prev_submitted,
                    is_locked=is_submitted or not prev_submitted,
                    is_last_submitted=name == last_submitted,
                )
            )
            prev_submitted = is_submitted

        last = by_name.get(StageCatalog.LAST)
        return DerivedStatus(
            stages=states,
            is_finished=bool(last and last.is_submitted),
            last_submitted_stage=last_submitted,
            current_stage=current_stage,
        )

    def button_for(self, state: StageState, actor: Actor) -> StageButton:
        """Which control the presentation layer renders for a stage row."""
        if state.is_submitted:
            if actor.is_admin and state.is_last_submitted:
                return StageButton.UNSUBMIT
            return StageButton.FINISHED
        if state.is_active:
            return StageButton.SUBMIT
        return StageButton.PENDING

    def editable_fields(self, state: StageState, actor: Actor) -> List[str]:
        """Form fields the actor may edit on a stage row."""
        if state.is_locked:
            return []
        fields = list(self.EDITABLE_ON_SUBMIT)
        if actor.is_admin and state.stage_name != StageCatalog.PURCHASE_REQUEST:
            fields.insert(0, "created_at")
        return fields

    # --- Action decision ----------------------------------------------------

    def decide_action(
        self,
        records: Iterable[StageRecord],
        stage_name: str,
        actor: Actor,
    ) -> StageAction:
        """
        Infer whether a post on `stage_name` submits or unsubmits it.

        Only an admin may unsubmit, and only the last submitted stage.
        A stage may only be submitted once its predecessor is submitted.
        """
        _require_stage(stage_name)
        status = self.compute_status(records)
        state = status.for_stage(stage_name)

        if state.is_submitted:
            if actor.is_admin and state.is_last_submitted:
                return StageAction.UNSUBMIT
            if not actor.is_admin:
                raise ActionNotAllowedError(
                    f"Stage '{stage_name}' is already submitted."
                )
            raise ActionNotAllowedError(
                f"Only the last submitted stage ('{status.last_submitted_stage}') "
                "can be unsubmitted."
            )
        if not state.is_active:
            raise ActionNotAllowedError(
                f"Stage '{stage_name}' cannot be submitted before "
                f"'{StageCatalog.predecessor(stage_name)}'."
            )
        return StageAction.SUBMIT

    # --- Validation ---------------------------------------------------------

    def validate_submission(
        self,
        stage_name: str,
        actor: Actor,
        fields: StageFields,
    ) -> Tuple[Optional[datetime], datetime]:
        """
        Check a submission's required fields and parse its timestamps.

        Returns (created_at, approved_at); created_at is None unless an admin
        supplied one for a stage other than Purchase Request.
        """
        _require_stage(stage_name)
        needs_created = actor.is_admin and stage_name != StageCatalog.PURCHASE_REQUEST

        missing: List[str] = []
        if needs_created and _is_blank(fields.created_at):
            missing.append("created_at")
        if _is_blank(fields.approved_at):
            missing.append("approved_at")
        if _is_blank(fields.office):
            missing.append("office")
        if _is_blank(fields.remark):
            missing.append("remark")

        if missing:
            if needs_created:
                message = (
                    "All fields (Created, Approved, Office, and Remark) are required "
                    f"for stage '{stage_name}' to be submitted."
                )
            else:
                message = (
                    "All fields (Approved, Office, and Remark) are required "
                    f"for stage '{stage_name}' to be submitted."
                )
            raise ValidationFailedError(message, missing)

        created_at = (
            _parse_timestamp(fields.created_at, "created_at") if needs_created else None
        )
        approved_at = _parse_timestamp(fields.approved_at, "approved_at")
        return created_at, approved_at

    # --- Planning -----------------------------------------------------------

    def resolve_created_at(
        self,
        record: StageRecord,
        supplied: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        """
        Start time for a stage being submitted.  Purchase Request keeps the
        value stamped at project creation; other stages take the admin's
        value, else the stored one, else `now`.
        """
        if record.stage_name == StageCatalog.PURCHASE_REQUEST:
            return record.created_at
        if supplied is not None:
            return supplied
        if record.created_at is None:
            return now
        return record.created_at

    def plan_action(
        self,
        records: Sequence[StageRecord],
        stage_name: str,
        actor: Actor,
        fields: StageFields,
        now: Optional[datetime] = None,
    ) -> StageActionOutcome:
        """
        Validate a stage post in full and return the records to persist.
        Nothing is written; input records are not mutated.
        """
        now = now or _utcnow()
        action = self.decide_action(records, stage_name, actor)
        by_name = _by_name(records)
        current = by_name.get(stage_name) or StageRecord(
            project_id=records[0].project_id if records else uuid.uuid4(),
            stage_name=stage_name,
        )

        if action is StageAction.UNSUBMIT:
            updated = dataclasses.replace(
                current,
                is_submitted=False,
                approved_at=None,
                office="",
                remarks="",
            )
            return StageActionOutcome(action=action, record=updated)

        supplied_created, approved_at = self.validate_submission(stage_name, actor, fields)
        updated = dataclasses.replace(
            current,
            created_at=self.resolve_created_at(current, supplied_created, now),
            approved_at=approved_at,
            office=fields.office.strip(),
            remarks=fields.remark.strip(),
            is_submitted=True,
        )

        cascade = None
        next_name = StageCatalog.successor(stage_name)
        if next_name is not None:
            successor = by_name.get(next_name)
            if successor is not None and successor.created_at is None:
                cascade = dataclasses.replace(successor, created_at=now)
        return StageActionOutcome(action=action, record=updated, cascade=cascade)


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

class ProjectService:
    """
    Manages project creation, header edits and access stamps.
    """

    def _require_header(self, pr_number: str, project_details: str) -> Tuple[str, str]:
        missing = [
            name
            for name, value in (("pr_number", pr_number), ("project_details", project_details))
            if _is_blank(value)
        ]
        if missing:
            raise ValidationFailedError(
                "PR Number and Project Details are required.", missing
            )
        return pr_number.strip(), project_details.strip()

    def new_stage_record(
        self,
        project_id: uuid.UUID,
        stage_name: str,
        now: datetime,
    ) -> StageRecord:
        """An empty stage row; Purchase Request starts the moment it is created."""
        _require_stage(stage_name)
        return StageRecord(
            project_id=project_id,
            stage_name=stage_name,
            created_at=now if stage_name == StageCatalog.PURCHASE_REQUEST else None,
        )

    def complete_stage_set(
        self,
        project_id: uuid.UUID,
        existing: Iterable[StageRecord],
        now: Optional[datetime] = None,
    ) -> Tuple[List[StageRecord], List[StageRecord]]:
        """
        Return (all eight records in catalog order, the newly created ones).
        Rows for names outside the catalog are ignored.
        """
        now = now or _utcnow()
        by_name = _by_name(existing)
        ordered: List[StageRecord] = []
        created: List[StageRecord] = []
        for name in StageCatalog.names():
            record = by_name.get(name)
            if record is None:
                record = self.new_stage_record(project_id, name, now)
                created.append(record)
            ordered.append(record)
        return ordered, created

    def create_project(
        self,
        pr_number: str,
        project_details: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Tuple[Project, List[StageRecord]]:
        """Create and return a new Project with its eight stage records (unsaved)."""
        now = now or _utcnow()
        pr_number, project_details = self._require_header(pr_number, project_details)
        project = Project(
            pr_number=pr_number,
            project_details=project_details,
            created_by_id=actor.id,
            created_at=now,
        )
        stages, _ = self.complete_stage_set(project.id, [], now)
        return project, stages

    def update_header(
        self,
        project: Project,
        pr_number: str,
        project_details: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Project:
        """Apply a header edit and stamp edited/last-accessed metadata."""
        now = now or _utcnow()
        pr_number, project_details = self._require_header(pr_number, project_details)
        project.pr_number = pr_number
        project.project_details = project_details
        project.edited_at = now
        project.edited_by_id = actor.id
        return self.touch_last_accessed(project, actor, now)

    def touch_last_accessed(
        self,
        project: Project,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Project:
        project.last_accessed_at = now or _utcnow()
        project.last_accessed_by_id = actor.id
        return project


# ---------------------------------------------------------------------------
# DashboardService
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectStatistics:
    total: int
    finished: int
    ongoing: int
    finished_pct: float
    ongoing_pct: float


class DashboardService:
    """
    Dashboard helpers: status labels, search matching, ordering and counts.
    """

    FINISHED_LABEL = "Finished"
    NOT_STARTED_LABEL = "No Stages Started"

    def status_label(self, status: Optional[DerivedStatus]) -> str:
        """
        "Finished" once Notice to Proceed is submitted, otherwise the first
        open stage.  Projects with no stage rows read "No Stages Started".
        """
        if status is None:
            return self.NOT_STARTED_LABEL
        if status.is_finished:
            return self.FINISHED_LABEL
        return status.current_stage or self.NOT_STARTED_LABEL

    def matches(self, project: Project, search: Optional[str]) -> bool:
        """Case-insensitive substring match on PR number or project details."""
        if _is_blank(search):
            return True
        needle = search.strip().lower()
        return (
            needle in project.pr_number.lower()
            or needle in project.project_details.lower()
        )

    def order_projects(self, projects: Iterable[Project]) -> List[Project]:
        """Most recently edited (or created, if never edited) first."""
        return sorted(
            projects,
            key=lambda p: p.edited_at or p.created_at,
            reverse=True,
        )

    def statistics(self, finished_flags: Sequence[bool]) -> ProjectStatistics:
        total = len(finished_flags)
        finished = sum(1 for f in finished_flags if f)
        ongoing = total - finished
        return ProjectStatistics(
            total=total,
            finished=finished,
            ongoing=ongoing,
            finished_pct=round(finished / total * 100, 2) if total else 0.0,
            ongoing_pct=round(ongoing / total * 100, 2) if total else 0.0,
        )
