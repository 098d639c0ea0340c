"""
api.py

REST API layer for the Procurement Stage Tracker.

Framework : FastAPI
Auth      : Session handling lives in front of this service.  The
            authenticating layer forwards the signed-in user's id in the
            X-User-Id header and the admin flag in X-User-Admin; the
            get_current_actor dependency turns them into an Actor that every
            use case receives explicitly.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /stages                              — the fixed stage catalog
  └── /projects                            — dashboard, create, header edit, delete
      ├── /statistics                      — finished / ongoing counts
      └── /{project_id}/stages             — derived stage status
          └── /{stage_name}                — submit / unsubmit (direction inferred)

Error handling
--------------
  InvalidStageError      → 400
  AuthorizationError     → 403
  NotFoundError          → 404
  ActionNotAllowedError  → 409
  ValidationFailedError  → 422  (body lists the offending fields)
  ApplicationError       → 422
  ValueError             → 422
  StorageError           → 500  (logged; generic message returned)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn main:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, Field

from application import (
    # Exceptions
    ApplicationError,
    AuthorizationError,
    NotFoundError,
    StorageError,
    # Use-case commands
    ApplyStageActionCommand,
    CreateProjectCommand,
    DeleteProjectCommand,
    UpdateProjectHeaderCommand,
    # Use-case classes
    ApplyStageActionUseCase,
    CreateProjectUseCase,
    DeleteProjectUseCase,
    GetProjectUseCase,
    GetStatisticsUseCase,
    GetWorkflowStatusUseCase,
    ListProjectsUseCase,
    ListStageCatalogUseCase,
    UpdateProjectHeaderUseCase,
    AbstractUnitOfWork,
)
from config import Settings, get_settings
from infrastructure import InMemoryUnitOfWork
from logging_config import log_context
from model import Actor, StageFields
from service import ActionNotAllowedError, InvalidStageError, ValidationFailedError

logger = logging.getLogger(__name__)

settings = get_settings()


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Procurement Stage Tracker API",
    version="1.0.0",
    description=(
        "Tracks purchase-request projects through the eight-stage procurement "
        "workflow, from Purchase Request to Notice to Proceed."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(InvalidStageError)
async def invalid_stage_handler(request, exc: InvalidStageError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ActionNotAllowedError)
async def action_not_allowed_handler(request, exc: ActionNotAllowedError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationFailedError)
async def validation_failed_handler(request, exc: ValidationFailedError):
    return JSONResponse(
        status_code=422, content={"detail": str(exc), "fields": exc.fields}
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    logger.error(
        "Storage failure on %s %s", request.method, request.url.path,
        exc_info=exc,
        extra=log_context(method=request.method, path=request.url.path),
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "The request could not be completed. Please try again."},
    )


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def get_current_actor(
    request: Request, settings: Settings = Depends(get_settings)
) -> Actor:
    """
    Resolve the signed-in user forwarded by the session layer.
    Missing or malformed ids are rejected with 401.
    """
    raw_id = request.headers.get(settings.ACTOR_HEADER)
    if not raw_id:
        raise HTTPException(status_code=401, detail="Not signed in.")
    try:
        actor_id = uuid.UUID(raw_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id.") from None
    raw_admin = request.headers.get(settings.ADMIN_HEADER, "0").strip().lower()
    return Actor(id=actor_id, is_admin=raw_admin in ("1", "true", "yes"))


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class CreateProjectRequest(BaseModel):
    pr_number: str = Field(..., max_length=100)
    project_details: str = Field(..., max_length=5000)


class UpdateProjectHeaderRequest(BaseModel):
    pr_number: str = Field(..., max_length=100)
    project_details: str = Field(..., max_length=5000)


class StageActionRequest(BaseModel):
    """
    Stage form values.  Ignored when the post unsubmits the stage.
    Timestamps use the datetime-local format, e.g. "2024-01-01T10:00".
    """
    approved_at: Optional[str] = None
    office: str = Field(default="", max_length=255)
    remark: str = Field(default="", max_length=2000)
    created_at: Optional[str] = Field(
        default=None, description="Admins only; ignored for Purchase Request."
    )


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Stage catalog
# ---------------------------------------------------------------------------

catalog_router = APIRouter(prefix="/stages", tags=["Stages"])


@catalog_router.get("", summary="List the procurement stages in order")
def list_stage_catalog():
    return _ok(ListStageCatalogUseCase().execute())


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new purchase-request project",
)
def create_project(
    body: CreateProjectRequest,
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Creates the project together with all eight stage records.  The
    Purchase Request stage starts immediately.
    """
    cmd = CreateProjectCommand(
        pr_number=body.pr_number,
        project_details=body.project_details,
        actor=actor,
    )
    result = CreateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.get("", summary="Dashboard list of projects")
def list_projects(
    search: Optional[str] = Query(default=None, description="Matches PR number or details."),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = ListProjectsUseCase().execute(uow, search=search)
    return _ok(result)


@project_router.get("/statistics", summary="Finished and ongoing project counts")
def get_statistics(
    search: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetStatisticsUseCase().execute(uow, search=search)
    return _ok(result)


@project_router.get("/{project_id}", summary="Get a project with its stage status")
def get_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetProjectUseCase().execute(project_id, actor, uow)
    return _ok(result)


@project_router.patch("/{project_id}", summary="Edit PR number and project details (admin)")
def update_project_header(
    body: UpdateProjectHeaderRequest,
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateProjectHeaderCommand(
        project_id=project_id,
        pr_number=body.pr_number,
        project_details=body.project_details,
        actor=actor,
    )
    result = UpdateProjectHeaderUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a project and all of its stages (admin)",
)
def delete_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    DeleteProjectUseCase().execute(DeleteProjectCommand(project_id=project_id, actor=actor), uow)


# ---------------------------------------------------------------------------
# Project stages
# ---------------------------------------------------------------------------

stage_router = APIRouter(
    prefix="/projects/{project_id}/stages",
    tags=["Project Stages"],
)


@stage_router.get("", summary="Derived status of every stage for the current user")
def get_workflow_status(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetWorkflowStatusUseCase().execute(project_id, actor, uow)
    return _ok(result)


@stage_router.post("/{stage_name}", summary="Submit or unsubmit a stage")
def apply_stage_action(
    body: Optional[StageActionRequest] = None,
    project_id: uuid.UUID = Path(...),
    stage_name: str = Path(..., description="Full stage name, e.g. 'RFQ 1'."),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Posting on an open stage submits it.  An administrator posting on the
    last submitted stage unsubmits it.  Every other post is rejected.
    An unsubmit needs no body.
    """
    body = body or StageActionRequest()
    cmd = ApplyStageActionCommand(
        project_id=project_id,
        stage_name=stage_name,
        actor=actor,
        fields=StageFields(
            approved_at=body.approved_at,
            office=body.office,
            remark=body.remark,
            created_at=body.created_at,
        ),
    )
    result = ApplyStageActionUseCase().execute(cmd, uow)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(catalog_router)
api_v1.include_router(project_router)
api_v1.include_router(stage_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Stages",
        "description": (
            "The fixed procurement stage sequence: Purchase Request, RFQ 1-3, "
            "Abstract of Quotation, Purchase Order, Notice of Award, Notice to Proceed."
        ),
    },
    {
        "name": "Projects",
        "description": (
            "Purchase-request projects.  Creating a project creates all eight stage "
            "records; editing the header and deleting are restricted to administrators."
        ),
    },
    {
        "name": "Project Stages",
        "description": (
            "Stage-by-stage progress.  Stages are submitted strictly in order; an "
            "administrator may unsubmit only the most recently submitted stage."
        ),
    },
]

app.openapi_tags = tags_metadata
