"""Board/task state machine.

Task status is the primary state and the board column the secondary one.
They are coupled only by ``move_task``: moving a task always overwrites its
status with the destination column's bound status. A plain ``update`` may
change either field without touching the other.

Every transition writes its Activity (and Notification, for assignments)
in the same transaction as the task row; push events go out after commit.
"""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from . import models, schemas
from .activity import create_notification, dispatch_events, notification_event, record_activity
from .database import atomic
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, reject_null_fields
from .integrations import EventPublisher, organization_room, project_room
from .models import ActivityType, ProjectRole, TaskPriority, TaskStatus
from .projects import has_project_access, require_project_access, require_project_role

logger = logging.getLogger("taskboard-core.tasks")

# Fields ``update`` accepts; label_ids replaces the label set
UPDATABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "column_id",
    "order",
    "due_date",
    "start_date",
    "estimated_hours",
    "actual_hours",
    "label_ids",
)
REQUIRED_FIELDS = ("title", "status", "priority", "order")

DEFAULT_PAGE_SIZE = 50


# ============================================================================
# Helpers
# ============================================================================

def _get_task(db: Session, task_id: UUID, lock: bool = False) -> models.Task:
    query = db.query(models.Task).filter(models.Task.id == task_id)
    if lock:
        query = query.with_for_update()
    task = query.first()
    if not task:
        raise NotFoundError("Task not found")
    return task


def _get_column(db: Session, project_id: UUID, column_id: UUID) -> models.BoardColumn:
    column = (
        db.query(models.BoardColumn)
        .join(models.Board)
        .filter(models.BoardColumn.id == column_id, models.Board.project_id == project_id)
        .first()
    )
    if not column:
        raise NotFoundError("Column not found")
    return column


def _next_task_number(db: Session, project_id: UUID) -> int:
    """
    Reserve the next task number for a project.

    The sequence row is locked for the rest of the transaction, so concurrent
    creates queue up and every number is handed out once.
    """
    sequence = (
        db.query(models.TaskSequence)
        .filter(models.TaskSequence.project_id == project_id)
        .with_for_update()
        .first()
    )
    if sequence is None:
        highest = (
            db.query(func.max(models.Task.task_number))
            .filter(models.Task.project_id == project_id)
            .scalar()
        )
        sequence = models.TaskSequence(project_id=project_id, next_number=(highest or 0) + 1)
        db.add(sequence)
    number = sequence.next_number
    sequence.next_number = number + 1
    db.flush()
    return number


def _resolve_labels(db: Session, project_id: UUID, label_ids: Iterable[UUID]) -> list[models.Label]:
    label_ids = list(dict.fromkeys(label_ids))
    if not label_ids:
        return []
    labels = (
        db.query(models.Label)
        .filter(models.Label.project_id == project_id, models.Label.id.in_(label_ids))
        .all()
    )
    if len(labels) != len(label_ids):
        raise BadRequestError("One or more labels do not belong to this project")
    return labels


def _resolve_assignee(db: Session, project: models.Project, user_id: UUID) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if not has_project_access(db, project, user_id):
        raise BadRequestError(f"User {user_id} is not a member of this project")
    return user


def _is_assigned(db: Session, task_id: UUID, user_id: UUID) -> bool:
    return db.query(models.task_assignees.c.id).filter(
        models.task_assignees.c.task_id == task_id,
        models.task_assignees.c.user_id == user_id,
    ).first() is not None


def _analytics_event(project: models.Project):
    return (
        organization_room(project.organization_id),
        "analytics:updated",
        {"projectId": str(project.id)},
    )


# ============================================================================
# Tasks
# ============================================================================

def create(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    title: str,
    description: Optional[str] = None,
    status: TaskStatus = TaskStatus.TODO,
    priority: TaskPriority = TaskPriority.MEDIUM,
    column_id: Optional[UUID] = None,
    parent_id: Optional[UUID] = None,
    due_date=None,
    start_date=None,
    estimated_hours: Optional[float] = None,
    assignee_ids: Iterable[UUID] = (),
    label_ids: Iterable[UUID] = (),
    publisher: Optional[EventPublisher] = None,
) -> models.Task:
    """
    Create a task. MEMBER or above.

    Without a column_id the task lands in the first board column bound to its
    status; if no column matches it stays off the board.

    Raises:
        NotFoundError: If the given column or parent task does not exist in the project
        BadRequestError: If the parent is itself a subtask, or an assignee/label is foreign
    """
    status = TaskStatus(status)
    priority = TaskPriority(priority)
    try:
        with atomic(db):
            project = require_project_role(db, project_id, actor_id, ProjectRole.MEMBER)

            if column_id is not None:
                column = _get_column(db, project_id, column_id)
            else:
                column = (
                    db.query(models.BoardColumn)
                    .join(models.Board)
                    .filter(models.Board.project_id == project_id, models.BoardColumn.status == status)
                    .order_by(models.Board.created_at, models.BoardColumn.order)
                    .first()
                )

            if parent_id is not None:
                parent = (
                    db.query(models.Task)
                    .filter(models.Task.id == parent_id, models.Task.project_id == project_id)
                    .first()
                )
                if not parent:
                    raise NotFoundError("Parent task not found")
                if parent.parent_id is not None:
                    raise BadRequestError("Subtasks cannot have subtasks of their own")

            assignees = [_resolve_assignee(db, project, uid) for uid in dict.fromkeys(assignee_ids)]
            labels = _resolve_labels(db, project_id, label_ids)

            task = models.Task(
                project_id=project_id,
                task_number=_next_task_number(db, project_id),
                title=title,
                description=description,
                status=status,
                priority=priority,
                column_id=column.id if column else None,
                parent_id=parent_id,
                due_date=due_date,
                start_date=start_date,
                estimated_hours=estimated_hours,
                creator_id=actor_id,
            )
            task.assignees = assignees
            task.labels = labels
            db.add(task)
            db.flush()
            record_activity(
                db, ActivityType.CREATED, "created the task", actor_id,
                task_id=task.id, project_id=project_id,
            )
    except IntegrityError:
        logger.warning(f"Task number collision in project {project_id}", exc_info=True)
        raise ConflictError("Task could not be numbered, please retry") from None

    db.refresh(task)
    logger.info(f"Created task #{task.task_number} in project {project_id}")
    dispatch_events(
        [
            (project_room(project_id), "task:created", schemas.task_payload(task)),
            _analytics_event(project),
        ],
        publisher,
    )
    return task


def find_all(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assignee_id: Optional[UUID] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[models.Task], int]:
    """
    List top-level tasks of a project, by board order then newest first.

    Args:
        search: Case-insensitive substring matched against title and description

    Returns:
        Tuple of (tasks page, total count)
    """
    require_project_access(db, project_id, actor_id)

    query = db.query(models.Task).filter(
        models.Task.project_id == project_id,
        models.Task.parent_id.is_(None),
    )
    if status is not None:
        query = query.filter(models.Task.status == status)
    if priority is not None:
        query = query.filter(models.Task.priority == priority)
    if assignee_id is not None:
        query = query.filter(models.Task.assignees.any(models.User.id == assignee_id))
    if search:
        query = query.filter(
            or_(
                models.Task.title.icontains(search, autoescape=True),
                models.Task.description.icontains(search, autoescape=True),
            )
        )

    total = query.count()
    tasks = (
        query.options(selectinload(models.Task.assignees), selectinload(models.Task.labels))
        .order_by(models.Task.order.asc(), models.Task.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return tasks, total


def find_by_column(db: Session, actor_id: UUID, column_id: UUID) -> list[models.Task]:
    """All tasks in a column, subtasks included, in board order."""
    column = db.query(models.BoardColumn).filter(models.BoardColumn.id == column_id).first()
    if not column:
        raise NotFoundError("Column not found")
    require_project_access(db, column.board.project_id, actor_id)
    return (
        db.query(models.Task)
        .options(selectinload(models.Task.assignees), selectinload(models.Task.labels))
        .filter(models.Task.column_id == column_id)
        .order_by(models.Task.order.asc())
        .all()
    )


def find_by_id(db: Session, actor_id: UUID, task_id: UUID) -> models.Task:
    task = _get_task(db, task_id)
    require_project_access(db, task.project_id, actor_id)
    return task


def get_activity(db: Session, actor_id: UUID, task_id: UUID, limit: int = 20) -> list[models.Activity]:
    """Newest activity entries of a task."""
    task = find_by_id(db, actor_id, task_id)
    return (
        db.query(models.Activity)
        .options(joinedload(models.Activity.user))
        .filter(models.Activity.task_id == task.id)
        .order_by(models.Activity.created_at.desc())
        .limit(limit)
        .all()
    )


def update(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    changes: dict,
    publisher: Optional[EventPublisher] = None,
) -> models.Task:
    """
    Patch a task. MEMBER or above.

    Status, priority and title changes are compared with the row read in
    this transaction. One activity is written: STATUS_CHANGED when the status
    changed, otherwise UPDATED when priority or title changed, otherwise none.
    A new column_id is stored as-is and does not re-derive the status.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise BadRequestError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    reject_null_fields(changes, REQUIRED_FIELDS)

    with atomic(db):
        task = _get_task(db, task_id, lock=True)
        require_project_role(db, task.project_id, actor_id, ProjectRole.MEMBER)

        described = []
        meta = {}
        status_changed = False
        if changes.get("status") is not None:
            new_status = TaskStatus(changes["status"])
            if new_status != task.status:
                status_changed = True
                described.append(f"status from {task.status.value} to {new_status.value}")
                meta["status"] = {"from": task.status.value, "to": new_status.value}
            changes["status"] = new_status
        if changes.get("priority") is not None:
            new_priority = TaskPriority(changes["priority"])
            if new_priority != task.priority:
                described.append(f"priority from {task.priority.value} to {new_priority.value}")
                meta["priority"] = {"from": task.priority.value, "to": new_priority.value}
            changes["priority"] = new_priority
        if changes.get("title") is not None and changes["title"] != task.title:
            described.append("title")
            meta["title"] = {"from": task.title, "to": changes["title"]}

        if changes.get("column_id") is not None:
            _get_column(db, task.project_id, changes["column_id"])
        if "label_ids" in changes:
            task.labels = _resolve_labels(db, task.project_id, changes.pop("label_ids") or [])

        for field, value in changes.items():
            setattr(task, field, value)

        if described:
            record_activity(
                db,
                ActivityType.STATUS_CHANGED if status_changed else ActivityType.UPDATED,
                f"updated {', '.join(described)}",
                actor_id,
                task_id=task.id,
                project_id=task.project_id,
                meta=meta,
            )

    db.refresh(task)
    logger.info(f"Updated task {task_id}: {sorted(changes)}")
    dispatch_events([(project_room(task.project_id), "task:updated", schemas.task_payload(task))], publisher)
    return task


def move_task(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    column_id: UUID,
    order: float = 0,
    publisher: Optional[EventPublisher] = None,
) -> models.Task:
    """
    Move a task onto a column at a position. MEMBER or above.

    The task always takes the destination column's status, even when it is
    only being reordered within its current column.

    Raises:
        NotFoundError: If the task or the target column does not exist in the project
    """
    with atomic(db):
        task = _get_task(db, task_id, lock=True)
        project = require_project_role(db, task.project_id, actor_id, ProjectRole.MEMBER)
        target = _get_column(db, task.project_id, column_id)

        source_name = task.column.name if task.column else "Unknown"
        meta = {
            "fromColumnId": str(task.column_id) if task.column_id else None,
            "toColumnId": str(target.id),
            "fromStatus": task.status.value,
            "toStatus": target.status.value,
        }
        task.column_id = target.id
        task.status = target.status
        task.order = order
        record_activity(
            db, ActivityType.MOVED, f"moved task from {source_name} to {target.name}", actor_id,
            task_id=task.id, project_id=task.project_id, meta=meta,
        )

    db.refresh(task)
    logger.info(f"Moved task {task_id} to column {column_id} ({task.status.value})")
    dispatch_events(
        [
            (project_room(task.project_id), "task:moved", schemas.task_payload(task)),
            _analytics_event(project),
        ],
        publisher,
    )
    return task


def assign_user(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    user_id: UUID,
    publisher: Optional[EventPublisher] = None,
) -> models.Task:
    """
    Assign a user to a task and notify them. MANAGER or above.

    Raises:
        ConflictError: If the user is already assigned (nothing else is written)
        BadRequestError: If the user has no access to the project
    """
    try:
        with atomic(db):
            task = _get_task(db, task_id, lock=True)
            project = require_project_role(db, task.project_id, actor_id, ProjectRole.MANAGER)
            if _is_assigned(db, task_id, user_id):
                raise ConflictError("User already assigned to this task")
            assignee = _resolve_assignee(db, project, user_id)

            db.execute(models.task_assignees.insert().values(task_id=task_id, user_id=user_id))
            record_activity(
                db, ActivityType.ASSIGNED, f"assigned {assignee.full_name}", actor_id,
                task_id=task.id, project_id=task.project_id, meta={"assigneeId": str(user_id)},
            )
            notification = create_notification(
                db,
                user_id,
                models.NotificationType.TASK_ASSIGNED,
                "New Task Assigned",
                f"You have been assigned to task: {task.title}",
                {"taskId": str(task.id), "taskTitle": task.title},
            )
    except IntegrityError:
        raise ConflictError("User already assigned to this task") from None

    db.refresh(task)
    logger.info(f"Assigned user {user_id} to task {task_id}")
    dispatch_events(
        [
            (
                project_room(task.project_id),
                "task:assigned",
                {
                    "taskId": str(task.id),
                    "assignee": schemas.UserSummary.model_validate(assignee).model_dump(mode="json"),
                },
            ),
            notification_event(notification),
        ],
        publisher,
    )
    return task


def unassign_user(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    user_id: UUID,
    publisher: Optional[EventPublisher] = None,
) -> models.Task:
    """
    Remove an assignee. MANAGER or above.

    Raises:
        NotFoundError: If the user is not assigned to the task
    """
    with atomic(db):
        task = _get_task(db, task_id, lock=True)
        require_project_role(db, task.project_id, actor_id, ProjectRole.MANAGER)
        deleted = db.execute(
            models.task_assignees.delete().where(
                models.task_assignees.c.task_id == task_id,
                models.task_assignees.c.user_id == user_id,
            )
        ).rowcount
        if not deleted:
            raise NotFoundError("User is not assigned to this task")
        assignee = db.query(models.User).filter(models.User.id == user_id).one()
        record_activity(
            db, ActivityType.UNASSIGNED, f"unassigned {assignee.full_name}", actor_id,
            task_id=task.id, project_id=task.project_id, meta={"assigneeId": str(user_id)},
        )

    db.refresh(task)
    logger.info(f"Unassigned user {user_id} from task {task_id}")
    dispatch_events([(project_room(task.project_id), "task:updated", schemas.task_payload(task))], publisher)
    return task


def delete(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    publisher: Optional[EventPublisher] = None,
) -> None:
    """
    Hard-delete a task (and its subtasks). MANAGER or above.

    The DELETED activity is not linked to the task, which no longer exists;
    it keeps the project id and the task's title and number in its metadata.
    """
    with atomic(db):
        task = _get_task(db, task_id, lock=True)
        project = require_project_role(db, task.project_id, actor_id, ProjectRole.MANAGER)
        record_activity(
            db,
            ActivityType.DELETED,
            f'deleted task "{task.title}"',
            actor_id,
            project_id=task.project_id,
            meta={"taskTitle": task.title, "taskNumber": task.task_number},
        )
        db.delete(task)

    logger.info(f"Deleted task {task_id} from project {project.id}")
    dispatch_events(
        [
            (project_room(project.id), "task:deleted", {"taskId": str(task_id)}),
            _analytics_event(project),
        ],
        publisher,
    )


# ============================================================================
# Comments
# ============================================================================

def _get_comment(db: Session, comment_id: UUID) -> models.Comment:
    comment = db.query(models.Comment).filter(models.Comment.id == comment_id).first()
    if not comment:
        raise NotFoundError("Comment not found")
    return comment


def get_comments(db: Session, actor_id: UUID, task_id: UUID) -> list[models.Comment]:
    """Top-level comments, newest first; replies hang off each one."""
    find_by_id(db, actor_id, task_id)
    return (
        db.query(models.Comment)
        .options(
            joinedload(models.Comment.user),
            selectinload(models.Comment.replies).joinedload(models.Comment.user),
        )
        .filter(models.Comment.task_id == task_id, models.Comment.parent_id.is_(None))
        .order_by(models.Comment.created_at.desc())
        .all()
    )


def add_comment(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    content: str,
    parent_id: Optional[UUID] = None,
    publisher: Optional[EventPublisher] = None,
) -> models.Comment:
    """
    Comment on a task, optionally replying to a top-level comment. MEMBER or above.
    """
    with atomic(db):
        task = _get_task(db, task_id)
        require_project_role(db, task.project_id, actor_id, ProjectRole.MEMBER)
        if parent_id is not None:
            parent = _get_comment(db, parent_id)
            if parent.task_id != task_id:
                raise BadRequestError("Parent comment belongs to a different task")
            if parent.parent_id is not None:
                raise BadRequestError("Replies cannot be nested")

        comment = models.Comment(task_id=task_id, user_id=actor_id, parent_id=parent_id, content=content)
        db.add(comment)
        db.flush()
        record_activity(
            db, ActivityType.COMMENTED, "added a comment", actor_id,
            task_id=task_id, project_id=task.project_id, meta={"commentId": str(comment.id)},
        )

    db.refresh(comment)
    logger.info(f"User {actor_id} commented on task {task_id}")
    dispatch_events(
        [(project_room(task.project_id), "task:comment_added", schemas.comment_payload(comment))],
        publisher,
    )
    return comment


def update_comment(db: Session, actor_id: UUID, comment_id: UUID, content: str) -> models.Comment:
    with atomic(db):
        comment = _get_comment(db, comment_id)
        if comment.user_id != actor_id:
            raise ForbiddenError("Can only edit own comments")
        comment.content = content

    db.refresh(comment)
    logger.debug(f"Edited comment {comment_id}")
    return comment


def delete_comment(
    db: Session,
    actor_id: UUID,
    comment_id: UUID,
    publisher: Optional[EventPublisher] = None,
) -> None:
    with atomic(db):
        comment = _get_comment(db, comment_id)
        if comment.user_id != actor_id:
            raise ForbiddenError("Can only delete own comments")
        task_id = comment.task_id
        project_id = comment.task.project_id
        db.delete(comment)

    logger.info(f"Deleted comment {comment_id} on task {task_id}")
    dispatch_events(
        [
            (
                project_room(project_id),
                "task:comment_deleted",
                {"commentId": str(comment_id), "taskId": str(task_id)},
            )
        ],
        publisher,
    )


# ============================================================================
# Attachments
# ============================================================================

def add_attachment(
    db: Session,
    actor_id: UUID,
    task_id: UUID,
    filename: str,
    url: str,
    public_id: Optional[str] = None,
    size: Optional[int] = None,
    mime_type: Optional[str] = None,
) -> models.Attachment:
    """Record a file the blob store already holds. MEMBER or above."""
    with atomic(db):
        task = _get_task(db, task_id)
        require_project_role(db, task.project_id, actor_id, ProjectRole.MEMBER)
        attachment = models.Attachment(
            task_id=task_id,
            uploaded_by_id=actor_id,
            filename=filename,
            url=url,
            public_id=public_id,
            size=size,
            mime_type=mime_type,
        )
        db.add(attachment)

    db.refresh(attachment)
    logger.info(f"Attached {filename} to task {task_id}")
    return attachment


def delete_attachment(db: Session, actor_id: UUID, attachment_id: UUID) -> Optional[str]:
    """
    Remove an attachment record. Only the uploader may do this.

    Returns:
        The blob store public_id of the removed file, so the caller can drop it
    """
    with atomic(db):
        attachment = db.query(models.Attachment).filter(models.Attachment.id == attachment_id).first()
        if not attachment:
            raise NotFoundError("Attachment not found")
        if attachment.uploaded_by_id != actor_id:
            raise ForbiddenError("Can only delete own attachments")
        public_id = attachment.public_id
        db.delete(attachment)

    logger.info(f"Deleted attachment {attachment_id}")
    return public_id
