"""Projects API endpoints: projects, members, invitations, board columns and task listing."""
import logging
from math import ceil
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ... import models, projects, schemas, tasks
from ...database import get_db
from ...integrations import EventPublisher, MailSender
from ..dependencies import get_current_user, get_event_publisher, get_mailer

logger = logging.getLogger("taskboard-core.api.projects")

router = APIRouter(tags=["projects"])


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    data: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """
    Create a project with a default board, columns and labels.

    - **organization_id**: Organization the project belongs to
    - **key**: Short code, unique across all projects (stored uppercase)
    """
    return projects.create(db, user.id, **data.model_dump())


@router.get("/", response_model=schemas.ProjectListResponse)
def list_projects(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    organization_id: Optional[UUID] = Query(None, description="Filter by organization"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """List projects the current user owns or belongs to."""
    items, total = projects.find_all(db, user.id, page=page, limit=limit, organization_id=organization_id)
    return schemas.ProjectListResponse(
        items=[schemas.ProjectResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        limit=limit,
        total_pages=ceil(total / limit) if total > 0 else 0,
    )


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return projects.find_by_id(db, user.id, project_id)


@router.patch("/{project_id}", response_model=schemas.ProjectResponse)
def update_project(
    project_id: UUID,
    data: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Update project details. Owner or ADMIN."""
    return projects.update(db, user.id, project_id, data.model_dump(exclude_unset=True), publisher=publisher)


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Delete a project and all its tasks. Owner only."""
    projects.delete(db, user.id, project_id)


@router.get("/{project_id}/stats", response_model=schemas.ProjectStats)
def get_project_stats(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    stats = projects.get_stats(db, user.id, project_id)
    return schemas.ProjectStats(
        total_tasks=stats["total_tasks"],
        tasks_by_status=stats["tasks_by_status"],
        tasks_by_priority=stats["tasks_by_priority"],
        recent_activity=[schemas.ActivityResponse.model_validate(a) for a in stats["recent_activity"]],
    )


# Members

@router.get("/{project_id}/members", response_model=list[schemas.ProjectMemberResponse])
def list_project_members(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return projects.get_members(db, user.id, project_id)


@router.post("/{project_id}/members", response_model=schemas.AddProjectMemberResult, status_code=201)
def add_project_member(
    project_id: UUID,
    data: schemas.ProjectMemberCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    mailer: MailSender = Depends(get_mailer),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Add a member by email.

    Registered users are added directly (type "member"); unknown emails get
    an invitation (type "invitation").
    """
    kind, row = projects.add_member(
        db,
        user.id,
        project_id,
        data.email,
        data.role,
        mailer=mailer,
        publisher=publisher,
        schedule=background_tasks.add_task,
    )
    return schemas.to_add_member_result(kind, row)


@router.patch("/{project_id}/members/{user_id}", response_model=schemas.ProjectMemberResponse)
def update_project_member(
    project_id: UUID,
    user_id: UUID,
    data: schemas.ProjectMemberUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Change a member's role. Project owner only."""
    return projects.update_member_role(db, user.id, project_id, user_id, data.role)


@router.delete("/{project_id}/members/{user_id}", status_code=204)
def remove_project_member(
    project_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    projects.remove_member(db, user.id, project_id, user_id, publisher=publisher)


# Invitations

@router.get("/{project_id}/invitations", response_model=list[schemas.ProjectInvitationResponse])
def list_project_invitations(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return projects.get_invitations(db, user.id, project_id)


@router.delete("/{project_id}/invitations/{invitation_id}", status_code=204)
def cancel_project_invitation(
    project_id: UUID,
    invitation_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    projects.cancel_invitation(db, user.id, project_id, invitation_id)


# Columns

@router.get("/{project_id}/columns", response_model=list[schemas.ColumnResponse])
def list_columns(
    project_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return [schemas.to_column_response(c) for c in projects.get_columns(db, user.id, project_id)]


@router.post("/{project_id}/columns", response_model=schemas.ColumnResponse, status_code=201)
def create_column(
    project_id: UUID,
    data: schemas.ColumnCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Add a board column. MANAGER or above; goes last unless an order is given."""
    column = projects.create_column(db, user.id, project_id, **data.model_dump())
    return schemas.to_column_response(column)


@router.post("/{project_id}/columns/reorder", response_model=list[schemas.ColumnResponse])
def reorder_columns(
    project_id: UUID,
    data: schemas.ColumnReorder,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Apply a batch of column orders atomically."""
    columns = projects.reorder_columns(db, user.id, project_id, [(c.id, c.order) for c in data.columns])
    return [schemas.to_column_response(c) for c in columns]


@router.patch("/{project_id}/columns/{column_id}", response_model=schemas.ColumnResponse)
def update_column(
    project_id: UUID,
    column_id: UUID,
    data: schemas.ColumnUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    column = projects.update_column(db, user.id, project_id, column_id, data.model_dump(exclude_unset=True))
    return schemas.to_column_response(column)


@router.delete("/{project_id}/columns/{column_id}", status_code=204)
def delete_column(
    project_id: UUID,
    column_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Delete an empty column."""
    projects.delete_column(db, user.id, project_id, column_id)


# Tasks

@router.get("/{project_id}/tasks", response_model=schemas.TaskListResponse)
def list_project_tasks(
    project_id: UUID,
    status: Optional[models.TaskStatus] = Query(None),
    priority: Optional[models.TaskPriority] = Query(None),
    assignee_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, description="Search in title and description"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """List top-level tasks with optional filters."""
    items, total = tasks.find_all(
        db,
        user.id,
        project_id,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        search=search,
        page=page,
        limit=limit,
    )
    return schemas.TaskListResponse(
        items=[schemas.TaskResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        limit=limit,
        total_pages=ceil(total / limit) if total > 0 else 0,
    )


@router.post("/{project_id}/tasks", response_model=schemas.TaskResponse, status_code=201)
def create_task(
    project_id: UUID,
    data: schemas.TaskCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Create a task.

    Without a column the task lands in the first column bound to its status.
    """
    return tasks.create(db, user.id, project_id, publisher=publisher, **data.model_dump())
