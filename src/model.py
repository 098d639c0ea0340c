"""
model.py

Domain models for the Procurement Stage Tracker.

Entities
--------
- Project
- StageRecord
- Actor

Value types
-----------
- StageCatalog   – the fixed, ordered eight-stage approval sequence
- StageFields    – raw candidate values submitted from a stage form
- StageState / DerivedStatus – per-stage flags computed by the workflow engine

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used for projects and actors.
Timestamps are always stored in UTC.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Stage catalog
# ---------------------------------------------------------------------------


class StageCatalog:
    """
    The immutable ordered definition of the eight procurement stages.

    Every other component refers to stages through this class; the literal
    stage names are declared only here.
    """

    PURCHASE_REQUEST = "Purchase Request"
    RFQ_1 = "RFQ 1"
    RFQ_2 = "RFQ 2"
    RFQ_3 = "RFQ 3"
    ABSTRACT_OF_QUOTATION = "Abstract of Quotation"
    PURCHASE_ORDER = "Purchase Order"
    NOTICE_OF_AWARD = "Notice of Award"
    NOTICE_TO_PROCEED = "Notice to Proceed"

    _ORDER: Tuple[Tuple[str, str], ...] = (
        (PURCHASE_REQUEST, "PR"),
        (RFQ_1, "RFQ1"),
        (RFQ_2, "RFQ2"),
        (RFQ_3, "RFQ3"),
        (ABSTRACT_OF_QUOTATION, "AoQ"),
        (PURCHASE_ORDER, "PO"),
        (NOTICE_OF_AWARD, "NoA"),
        (NOTICE_TO_PROCEED, "NtP"),
    )

    FIRST = PURCHASE_REQUEST
    LAST = NOTICE_TO_PROCEED

    _NAMES: Tuple[str, ...] = tuple(name for name, _ in _ORDER)
    _INDEX: Dict[str, int] = {name: i for i, name in enumerate(_NAMES)}
    _SHORT: Dict[str, str] = dict(_ORDER)

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        return cls._NAMES

    @classmethod
    def contains(cls, stage_name: str) -> bool:
        return stage_name in cls._INDEX

    @classmethod
    def index_of(cls, stage_name: str) -> int:
        """Zero-based position of a stage; raises KeyError for unknown names."""
        return cls._INDEX[stage_name]

    @classmethod
    def successor(cls, stage_name: str) -> Optional[str]:
        i = cls.index_of(stage_name)
        return cls._NAMES[i + 1] if i + 1 < len(cls._NAMES) else None

    @classmethod
    def predecessor(cls, stage_name: str) -> Optional[str]:
        i = cls.index_of(stage_name)
        return cls._NAMES[i - 1] if i > 0 else None

    @classmethod
    def short_form(cls, stage_name: str) -> str:
        return cls._SHORT[stage_name]

    @classmethod
    def size(cls) -> int:
        return len(cls._NAMES)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class StageAction(str, Enum):
    """Direction of a stage form post, inferred from the current stage state."""
    SUBMIT = "submit"
    UNSUBMIT = "unsubmit"


class StageButton(str, Enum):
    """
    Control rendered for a stage row.

    SUBMIT    – the stage is active and may be submitted.
    UNSUBMIT  – admin only, on the last submitted stage.
    FINISHED  – submitted and not reversible by this actor (disabled).
    PENDING   – an earlier stage is still open (disabled).
    """
    SUBMIT = "submit"
    UNSUBMIT = "unsubmit"
    FINISHED = "finished"
    PENDING = "pending"


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""
    id: uuid.UUID
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Core Project Entities
# ---------------------------------------------------------------------------


@dataclass
class Project:
    """
    A purchase-request project tracked through the procurement stages.

    A project never exists without its full set of eight StageRecords;
    both are created and deleted together.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    pr_number: str = ""
    project_details: str = ""

    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Last header edit (admin only)
    edited_at: Optional[datetime] = None
    edited_by_id: Optional[uuid.UUID] = None

    # Touched by any stage mutation or header edit
    last_accessed_at: Optional[datetime] = None
    last_accessed_by_id: Optional[uuid.UUID] = None


@dataclass
class StageRecord:
    """
    Progress of one project through one catalog stage.

    Keyed naturally by (project_id, stage_name).  `is_submitted` marks the
    stage complete and locks its fields; an admin may reverse the most
    recent submission.
    """
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Project.id
    stage_name: str = StageCatalog.FIRST                         # FK → StageCatalog

    created_at: Optional[datetime] = None     # when work on the stage began
    approved_at: Optional[datetime] = None    # when the stage was approved
    office: str = ""
    remarks: str = ""
    is_submitted: bool = False

    @property
    def key(self) -> Tuple[uuid.UUID, str]:
        return (self.project_id, self.stage_name)


# ---------------------------------------------------------------------------
# Workflow value types
# ---------------------------------------------------------------------------


@dataclass
class StageFields:
    """
    Candidate values posted from a stage form.

    Timestamps arrive as raw strings (e.g. "2024-01-01T10:00"); empty
    strings and None both mean "not supplied".
    """
    approved_at: Optional[str] = None
    office: str = ""
    remark: str = ""
    created_at: Optional[str] = None


@dataclass(frozen=True)
class StageState:
    """Derived flags for one stage; recomputed after every mutation."""
    stage_name: str
    short_form: str
    is_submitted: bool
    is_active: bool       # eligible for submission
    is_locked: bool       # fields disabled
    is_last_submitted: bool


@dataclass(frozen=True)
class DerivedStatus:
    """Workflow status of a whole project."""
    stages: List[StageState]
    is_finished: bool
    last_submitted_stage: Optional[str]
    current_stage: Optional[str]          # first unsubmitted stage

    def for_stage(self, stage_name: str) -> StageState:
        return self.stages[StageCatalog.index_of(stage_name)]
