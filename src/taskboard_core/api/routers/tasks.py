"""Task API endpoints: task lifecycle, assignment, comments and attachments."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import models, schemas, tasks
from ...database import get_db
from ...integrations import EventPublisher
from ..dependencies import get_current_user, get_event_publisher

logger = logging.getLogger("taskboard-core.api.tasks")

router = APIRouter(tags=["tasks"])


@router.get("/column/{column_id}", response_model=list[schemas.TaskResponse])
def list_column_tasks(
    column_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return tasks.find_by_column(db, user.id, column_id)


@router.patch("/comments/{comment_id}", response_model=schemas.CommentResponse)
def update_comment(
    comment_id: UUID,
    data: schemas.CommentUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Edit a comment. Authors only."""
    return schemas.to_comment_response(tasks.update_comment(db, user.id, comment_id, data.content))


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tasks.delete_comment(db, user.id, comment_id, publisher=publisher)


@router.delete("/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    attachment_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Remove an attachment record. Uploader only."""
    tasks.delete_attachment(db, user.id, attachment_id)


@router.get("/{task_id}", response_model=schemas.TaskDetailResponse)
def get_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Get a task with subtasks, threaded comments, attachments and the latest 20 activities."""
    task = tasks.find_by_id(db, user.id, task_id)
    return schemas.to_task_detail(task, tasks.get_activity(db, user.id, task_id))


@router.patch("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: UUID,
    data: schemas.TaskUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Update task fields.

    Changing column_id here does not change the status; use the move endpoint
    for board moves.
    """
    return tasks.update(db, user.id, task_id, data.model_dump(exclude_unset=True), publisher=publisher)


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tasks.delete(db, user.id, task_id, publisher=publisher)


@router.post("/{task_id}/move", response_model=schemas.TaskResponse)
def move_task(
    task_id: UUID,
    data: schemas.TaskMove,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Move a task to a column; the task takes the column's status."""
    return tasks.move_task(db, user.id, task_id, data.column_id, data.order, publisher=publisher)


@router.post("/{task_id}/assignees", response_model=schemas.TaskResponse)
def assign_user(
    task_id: UUID,
    data: schemas.TaskAssign,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return tasks.assign_user(db, user.id, task_id, data.user_id, publisher=publisher)


@router.delete("/{task_id}/assignees/{user_id}", response_model=schemas.TaskResponse)
def unassign_user(
    task_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return tasks.unassign_user(db, user.id, task_id, user_id, publisher=publisher)


@router.get("/{task_id}/activity", response_model=list[schemas.ActivityResponse])
def get_task_activity(
    task_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return tasks.get_activity(db, user.id, task_id)


# Comments

@router.get("/{task_id}/comments", response_model=list[schemas.CommentResponse])
def list_comments(
    task_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return [schemas.to_comment_response(c) for c in tasks.get_comments(db, user.id, task_id)]


@router.post("/{task_id}/comments", response_model=schemas.CommentResponse, status_code=201)
def add_comment(
    task_id: UUID,
    data: schemas.CommentCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    comment = tasks.add_comment(db, user.id, task_id, data.content, data.parent_id, publisher=publisher)
    return schemas.to_comment_response(comment)


# Attachments

@router.post("/{task_id}/attachments", response_model=schemas.AttachmentResponse, status_code=201)
def add_attachment(
    task_id: UUID,
    data: schemas.AttachmentCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Record a file uploaded to the blob store."""
    return tasks.add_attachment(db, user.id, task_id, **data.model_dump())
