"""Project authorization service.

There is no project-level OWNER role. ``Project.owner_id`` is the owner and
passes every project gate, member row or not; everyone else is compared in
the project role hierarchy.
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .activity import create_notification, dispatch_events, notification_event, queue_mail
from .config import get_settings
from .database import atomic
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, reject_null_fields
from .integrations import (
    EventPublisher,
    MailSender,
    project_invitation_email,
    project_member_added_email,
    project_room,
)
from .models import InvitationStatus, OrganizationRole, ProjectRole, TaskStatus, utcnow
from .organizations import get_membership as get_org_membership
from .roles import has_min_org_role, has_min_project_role

logger = logging.getLogger("taskboard-core.projects")

DEFAULT_BOARD_NAME = "Main Board"

# (name, bound status, color), in board order
DEFAULT_COLUMNS = (
    ("Backlog", TaskStatus.BACKLOG, "#6b7280"),
    ("To Do", TaskStatus.TODO, "#3b82f6"),
    ("In Progress", TaskStatus.IN_PROGRESS, "#f59e0b"),
    ("In Review", TaskStatus.IN_REVIEW, "#8b5cf6"),
    ("Done", TaskStatus.DONE, "#10b981"),
)

DEFAULT_LABELS = (
    ("Bug", "#ef4444"),
    ("Feature", "#3b82f6"),
    ("Enhancement", "#10b981"),
    ("Documentation", "#6b7280"),
)

DEFAULT_COLUMN_COLOR = "#3b82f6"

UPDATABLE_FIELDS = ("name", "description", "color", "status", "start_date", "end_date")
COLUMN_FIELDS = ("name", "status", "color", "wip_limit")
# Non-nullable on both projects and board columns
REQUIRED_FIELDS = ("name", "status")


# ============================================================================
# Access helpers (shared with the task service)
# ============================================================================

def get_project(db: Session, project_id: UUID, lock: bool = False) -> models.Project:
    query = db.query(models.Project).filter(models.Project.id == project_id)
    if lock:
        query = query.with_for_update()
    project = query.first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def get_member(
    db: Session,
    project_id: UUID,
    user_id: UUID,
    lock: bool = False,
) -> Optional[models.ProjectMember]:
    """Return the membership row for (project, user), or None."""
    query = db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == project_id,
        models.ProjectMember.user_id == user_id,
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def has_project_access(db: Session, project: models.Project, user_id: UUID) -> bool:
    """Owner or member."""
    return project.owner_id == user_id or get_member(db, project.id, user_id) is not None


def require_project_access(db: Session, project_id: UUID, actor_id: UUID) -> models.Project:
    """
    Resolve a project the actor may read.

    Raises:
        NotFoundError: If the project does not exist
        ForbiddenError: If the actor is neither owner nor member
    """
    project = get_project(db, project_id)
    if not has_project_access(db, project, actor_id):
        logger.warning(f"User {actor_id} denied access to project {project_id}: not a member")
        raise ForbiddenError("Not a member of this project")
    return project


def require_project_role(
    db: Session,
    project_id: UUID,
    actor_id: UUID,
    minimum: ProjectRole,
    lock: bool = False,
) -> models.Project:
    """
    Resolve a project where the actor is the owner or holds at least ``minimum``.

    The owner check comes first and never consults the hierarchy.
    """
    project = get_project(db, project_id)
    if project.owner_id == actor_id:
        return project
    member = get_member(db, project_id, actor_id, lock=lock)
    if not member:
        logger.warning(f"User {actor_id} denied access to project {project_id}: not a member")
        raise ForbiddenError("Not a member of this project")
    if not has_min_project_role(member.role, minimum):
        logger.warning(
            f"User {actor_id} ({member.role.value}) denied in project {project_id}: requires {minimum.value}"
        )
        raise ForbiddenError("Insufficient permissions")
    return project


def _require_project_owner(db: Session, project_id: UUID, actor_id: UUID) -> models.Project:
    project = get_project(db, project_id)
    if project.owner_id != actor_id:
        logger.warning(f"User {actor_id} denied owner-only action in project {project_id}")
        raise ForbiddenError("Only the project owner can perform this action")
    return project


def get_board(db: Session, project_id: UUID) -> models.Board:
    board = (
        db.query(models.Board)
        .filter(models.Board.project_id == project_id)
        .order_by(models.Board.created_at)
        .first()
    )
    if not board:
        raise NotFoundError("Board not found")
    return board


def _board_columns(db: Session, board_id: UUID, lock: bool = False) -> list[models.BoardColumn]:
    query = (
        db.query(models.BoardColumn)
        .filter(models.BoardColumn.board_id == board_id)
        .order_by(models.BoardColumn.order)
    )
    if lock:
        query = query.with_for_update()
    return query.all()


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


# ============================================================================
# Projects
# ============================================================================

def create(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    key: str,
    name: str,
    description: Optional[str] = None,
    color: Optional[str] = None,
    status: models.ProjectStatus = models.ProjectStatus.ACTIVE,
    start_date=None,
    end_date=None,
) -> models.Project:
    """
    Create a project with its default board, columns and labels.

    The creator needs organization role MEMBER or above (GUEST cannot create)
    and becomes both the project owner and an ADMIN member.

    Raises:
        ForbiddenError: If the actor is not a non-guest member of the organization
        ConflictError: If the (uppercased) key is already taken by any project
    """
    key = key.strip().upper()
    if not key:
        raise BadRequestError("Project key is required")

    try:
        with atomic(db):
            org_member = get_org_membership(db, organization_id, actor_id)
            if not org_member:
                raise ForbiddenError("Not a member of this organization")
            if not has_min_org_role(org_member.role, OrganizationRole.MEMBER):
                logger.warning(f"Guest {actor_id} tried to create a project in organization {organization_id}")
                raise ForbiddenError("Guests cannot create projects")
            if db.query(models.Project.id).filter(models.Project.key == key).first():
                raise ConflictError(f"Project key '{key}' already exists")

            project = models.Project(
                organization_id=organization_id,
                owner_id=actor_id,
                key=key,
                name=name,
                description=description,
                color=color,
                status=status,
                start_date=start_date,
                end_date=end_date,
            )
            db.add(project)
            db.flush()

            db.add(models.TaskSequence(project_id=project.id, next_number=1))
            board = models.Board(project_id=project.id, name=DEFAULT_BOARD_NAME)
            db.add(board)
            db.flush()
            for order, (column_name, column_status, column_color) in enumerate(DEFAULT_COLUMNS):
                db.add(models.BoardColumn(
                    board_id=board.id,
                    name=column_name,
                    order=order,
                    status=column_status,
                    color=column_color,
                ))
            for label_name, label_color in DEFAULT_LABELS:
                db.add(models.Label(project_id=project.id, name=label_name, color=label_color))
            db.add(models.ProjectMember(project_id=project.id, user_id=actor_id, role=ProjectRole.ADMIN))
    except IntegrityError:
        logger.warning(f"Lost race creating project with key {key}", exc_info=True)
        raise ConflictError(f"Project key '{key}' already exists") from None

    db.refresh(project)
    logger.info(f"Created project {project.key} ({project.id}) in organization {organization_id}")
    return project


def find_all(
    db: Session,
    actor_id: UUID,
    page: int = 1,
    limit: int = 20,
    organization_id: Optional[UUID] = None,
) -> tuple[list[models.Project], int]:
    """
    Projects the actor owns or belongs to, most recently updated first.

    Returns:
        Tuple of (projects page, total count)
    """
    member_project_ids = db.query(models.ProjectMember.project_id).filter(
        models.ProjectMember.user_id == actor_id
    )
    query = db.query(models.Project).filter(
        (models.Project.owner_id == actor_id) | models.Project.id.in_(member_project_ids)
    )
    if organization_id is not None:
        query = query.filter(models.Project.organization_id == organization_id)

    total = query.count()
    projects = (
        query.order_by(models.Project.updated_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return projects, total


def find_by_id(db: Session, actor_id: UUID, project_id: UUID) -> models.Project:
    return require_project_access(db, project_id, actor_id)


def update(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    changes: dict,
    publisher: Optional[EventPublisher] = None,
) -> models.Project:
    """Patch project fields. Owner or ADMIN."""
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise BadRequestError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    reject_null_fields(changes, REQUIRED_FIELDS)

    with atomic(db):
        project = require_project_role(db, project_id, actor_id, ProjectRole.ADMIN, lock=True)
        for field, value in changes.items():
            setattr(project, field, value)

    db.refresh(project)
    logger.info(f"Updated project {project_id}: {sorted(changes)}")
    dispatch_events([(project_room(project.id), "project:updated", schemas.project_payload(project))], publisher)
    return project


def delete(db: Session, actor_id: UUID, project_id: UUID) -> None:
    """Delete a project and everything it owns. Owner only (ADMIN is not enough)."""
    with atomic(db):
        project = _require_project_owner(db, project_id, actor_id)
        db.delete(project)
        db.flush()
        # Task-less activity rows (e.g. deletions) only reference the project
        db.query(models.Activity).filter(models.Activity.project_id == project_id).delete(
            synchronize_session=False
        )

    logger.info(f"Deleted project {project_id}")


def get_stats(db: Session, actor_id: UUID, project_id: UUID) -> dict:
    """Task counts by status and priority plus the ten latest activities."""
    require_project_access(db, project_id, actor_id)

    by_status = (
        db.query(models.Task.status, func.count(models.Task.id))
        .filter(models.Task.project_id == project_id)
        .group_by(models.Task.status)
        .all()
    )
    by_priority = (
        db.query(models.Task.priority, func.count(models.Task.id))
        .filter(models.Task.project_id == project_id)
        .group_by(models.Task.priority)
        .all()
    )
    tasks_by_status = {status.value: count for status, count in by_status}
    recent_activity = (
        db.query(models.Activity)
        .options(joinedload(models.Activity.user))
        .filter(models.Activity.project_id == project_id)
        .order_by(models.Activity.created_at.desc())
        .limit(10)
        .all()
    )
    return {
        "total_tasks": sum(tasks_by_status.values()),
        "tasks_by_status": tasks_by_status,
        "tasks_by_priority": {priority.value: count for priority, count in by_priority},
        "recent_activity": recent_activity,
    }


# ============================================================================
# Members
# ============================================================================

def get_members(db: Session, actor_id: UUID, project_id: UUID) -> list[models.ProjectMember]:
    require_project_access(db, project_id, actor_id)
    return (
        db.query(models.ProjectMember)
        .options(joinedload(models.ProjectMember.user))
        .filter(models.ProjectMember.project_id == project_id)
        .order_by(models.ProjectMember.joined_at)
        .all()
    )


def add_member(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    email: str,
    role: ProjectRole = ProjectRole.MEMBER,
    mailer: Optional[MailSender] = None,
    publisher: Optional[EventPublisher] = None,
    schedule: Optional[Callable[..., Any]] = None,
) -> tuple[str, object]:
    """
    Add a member by email. Owner or ADMIN.

    Unknown emails get a pending ProjectInvitation instead of a membership.
    Emails are best-effort in both branches.
    With ``schedule`` they are queued to go out after the response.

    Returns:
        ("invitation", ProjectInvitation) or ("member", ProjectMember)

    Raises:
        ConflictError: If the user is already a member or the email already has a pending invitation
    """
    now = utcnow()
    try:
        with atomic(db):
            project = require_project_role(db, project_id, actor_id, ProjectRole.ADMIN, lock=True)
            inviter = db.query(models.User).filter(models.User.id == actor_id).one()
            user = db.query(models.User).filter(models.User.email == email).first()

            if user is None:
                pending = (
                    db.query(models.ProjectInvitation)
                    .filter(
                        models.ProjectInvitation.project_id == project_id,
                        models.ProjectInvitation.email == email,
                        models.ProjectInvitation.status == InvitationStatus.PENDING,
                        models.ProjectInvitation.expires_at >= now,
                    )
                    .first()
                )
                if pending:
                    raise ConflictError("An invitation has already been sent to this email")
                row = models.ProjectInvitation(
                    project_id=project_id,
                    email=email,
                    role=role,
                    token=secrets.token_urlsafe(32),
                    status=InvitationStatus.PENDING,
                    inviter_id=actor_id,
                    expires_at=now + timedelta(days=get_settings().invitation_ttl_days),
                )
                db.add(row)
                kind = "invitation"
            else:
                if project.owner_id == user.id or get_member(db, project_id, user.id):
                    raise ConflictError("User is already a member of this project")
                row = models.ProjectMember(project_id=project_id, user_id=user.id, role=role)
                db.add(row)
                notification = create_notification(
                    db,
                    user.id,
                    models.NotificationType.PROJECT_MEMBER_ADDED,
                    "Added to Project",
                    f"You have been added to project: {project.name}",
                    {"projectId": str(project_id), "projectName": project.name},
                )
                kind = "member"
    except IntegrityError:
        raise ConflictError("User is already a member of this project") from None

    db.refresh(row)
    sender_name = inviter.full_name or inviter.email
    if kind == "invitation":
        logger.info(f"Invited {email} to project {project_id} as {role.value}")
        subject, html = project_invitation_email(project.name, sender_name, role.value, row.token)
        queue_mail(email, subject, html, mailer=mailer, schedule=schedule)
        return kind, row

    logger.info(f"Added user {row.user_id} to project {project_id} as {role.value}")
    dispatch_events(
        [
            (project_room(project_id), "project:member_added", schemas.member_payload(row)),
            notification_event(notification),
        ],
        publisher,
    )
    subject, html = project_member_added_email(user.full_name or user.email, project.name, project_id)
    queue_mail(email, subject, html, mailer=mailer, schedule=schedule)
    return kind, row


def remove_member(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    user_id: UUID,
    publisher: Optional[EventPublisher] = None,
) -> None:
    """
    Remove a member. Leaving is always allowed; removing others needs owner
    or ADMIN; the owner can never be removed.
    """
    with atomic(db):
        project = get_project(db, project_id)
        if user_id == project.owner_id:
            logger.warning(f"User {actor_id} tried to remove the owner of project {project_id}")
            raise BadRequestError("Cannot remove the project owner")
        if user_id != actor_id:
            require_project_role(db, project_id, actor_id, ProjectRole.ADMIN, lock=True)
        member = get_member(db, project_id, user_id, lock=True)
        if not member:
            raise NotFoundError("Member not found")
        db.delete(member)

    logger.info(f"Removed user {user_id} from project {project_id} (by {actor_id})")
    dispatch_events(
        [(project_room(project_id), "project:member_removed", {"userId": str(user_id)})],
        publisher,
    )


def update_member_role(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    user_id: UUID,
    role: ProjectRole,
) -> models.ProjectMember:
    """Change a member's role. Owner only; the owner's own entry is off limits."""
    with atomic(db):
        project = _require_project_owner(db, project_id, actor_id)
        if user_id == project.owner_id:
            raise BadRequestError("Cannot change the project owner's role")
        member = get_member(db, project_id, user_id, lock=True)
        if not member:
            raise NotFoundError("Member not found")
        member.role = role

    db.refresh(member)
    logger.info(f"Changed role of {user_id} in project {project_id} to {role.value}")
    return member


# ============================================================================
# Project invitations
# ============================================================================

def get_invitations(db: Session, actor_id: UUID, project_id: UUID) -> list[models.ProjectInvitation]:
    """Pending invitations, newest first. Owner or ADMIN."""
    require_project_role(db, project_id, actor_id, ProjectRole.ADMIN)
    return (
        db.query(models.ProjectInvitation)
        .filter(
            models.ProjectInvitation.project_id == project_id,
            models.ProjectInvitation.status == InvitationStatus.PENDING,
        )
        .order_by(models.ProjectInvitation.created_at.desc())
        .all()
    )


def cancel_invitation(db: Session, actor_id: UUID, project_id: UUID, invitation_id: UUID) -> None:
    with atomic(db):
        require_project_role(db, project_id, actor_id, ProjectRole.ADMIN, lock=True)
        invitation = (
            db.query(models.ProjectInvitation)
            .filter(
                models.ProjectInvitation.id == invitation_id,
                models.ProjectInvitation.project_id == project_id,
            )
            .first()
        )
        if not invitation:
            raise NotFoundError("Invitation not found")
        db.delete(invitation)

    logger.info(f"Cancelled invitation {invitation_id} in project {project_id}")


def get_invitation_by_token(db: Session, token: str) -> models.ProjectInvitation:
    """
    Look up a PENDING project invitation; expired ones are marked EXPIRED first.

    Raises:
        NotFoundError: If no invitation has this token
        BadRequestError: If it is no longer pending or has expired
    """
    invitation = (
        db.query(models.ProjectInvitation)
        .filter(models.ProjectInvitation.token == token)
        .first()
    )
    if not invitation:
        raise NotFoundError("Invitation not found")
    if invitation.status != InvitationStatus.PENDING:
        raise BadRequestError(f"Invitation has already been {invitation.status.value.lower()}")
    if invitation.expires_at < utcnow():
        with atomic(db):
            invitation.status = InvitationStatus.EXPIRED
        raise BadRequestError("Invitation has expired")
    return invitation


def _get_invitee(db: Session, actor_id: UUID, invitation: models.ProjectInvitation) -> models.User:
    user = db.query(models.User).filter(models.User.id == actor_id).first()
    if not user:
        raise NotFoundError("User not found")
    if user.email != invitation.email:
        logger.warning(f"User {actor_id} tried to use project invitation {invitation.id} addressed to another email")
        raise ForbiddenError("This invitation was sent to a different email address")
    return user


def accept_invitation(
    db: Session,
    actor_id: UUID,
    token: str,
    publisher: Optional[EventPublisher] = None,
) -> models.ProjectMember:
    """
    Accept a project invitation addressed to the actor's email.

    Raises:
        ForbiddenError: If the email does not match
        ConflictError: If already a member (the invitation is still marked ACCEPTED)
    """
    invitation = get_invitation_by_token(db, token)
    _get_invitee(db, actor_id, invitation)
    project = get_project(db, invitation.project_id)

    if project.owner_id == actor_id or get_member(db, project.id, actor_id):
        with atomic(db):
            invitation.status = InvitationStatus.ACCEPTED
        raise ConflictError("You are already a member of this project")

    try:
        with atomic(db):
            locked = (
                db.query(models.ProjectInvitation)
                .filter(models.ProjectInvitation.id == invitation.id)
                .with_for_update()
                .one()
            )
            if locked.status != InvitationStatus.PENDING:
                raise BadRequestError(f"Invitation has already been {locked.status.value.lower()}")
            member = models.ProjectMember(project_id=locked.project_id, user_id=actor_id, role=locked.role)
            db.add(member)
            locked.status = InvitationStatus.ACCEPTED
    except IntegrityError:
        raise ConflictError("You are already a member of this project") from None

    db.refresh(member)
    logger.info(f"User {actor_id} joined project {member.project_id} as {member.role.value}")
    dispatch_events(
        [(project_room(member.project_id), "project:member_added", schemas.member_payload(member))],
        publisher,
    )
    return member


def reject_invitation(db: Session, actor_id: UUID, token: str) -> models.ProjectInvitation:
    invitation = get_invitation_by_token(db, token)
    _get_invitee(db, actor_id, invitation)
    with atomic(db):
        invitation.status = InvitationStatus.REJECTED
    logger.info(f"User {actor_id} rejected project invitation {invitation.id}")
    return invitation


# ============================================================================
# Columns
# ============================================================================

def get_columns(db: Session, actor_id: UUID, project_id: UUID) -> list[models.BoardColumn]:
    require_project_access(db, project_id, actor_id)
    return _board_columns(db, get_board(db, project_id).id)


def create_column(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    name: str,
    status: TaskStatus = TaskStatus.TODO,
    color: Optional[str] = None,
    order: Optional[int] = None,
    wip_limit: Optional[int] = None,
) -> models.BoardColumn:
    """
    Add a column to the project board. MANAGER or above.

    Without an explicit order the column goes last (max order + 1).

    Raises:
        BadRequestError: If the explicit order is already used on the board
    """
    with atomic(db):
        require_project_role(db, project_id, actor_id, ProjectRole.MANAGER, lock=True)
        board = get_board(db, project_id)
        existing = _board_columns(db, board.id, lock=True)
        used = {c.order for c in existing}
        if order is None:
            order = max(used) + 1 if used else 0
        elif order in used:
            raise BadRequestError(f"Column order {order} is already in use")

        column = models.BoardColumn(
            board_id=board.id,
            name=name,
            order=order,
            status=status,
            color=color or DEFAULT_COLUMN_COLOR,
            wip_limit=wip_limit,
        )
        db.add(column)

    db.refresh(column)
    logger.info(f"Created column '{name}' ({status.value}) at order {order} in project {project_id}")
    return column


def update_column(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    column_id: UUID,
    changes: dict,
) -> models.BoardColumn:
    unknown = set(changes) - set(COLUMN_FIELDS)
    if unknown:
        raise BadRequestError(f"Cannot update column field(s): {', '.join(sorted(unknown))}")
    reject_null_fields(changes, REQUIRED_FIELDS)

    with atomic(db):
        require_project_role(db, project_id, actor_id, ProjectRole.MANAGER, lock=True)
        column = _get_column(db, project_id, column_id)
        for field, value in changes.items():
            setattr(column, field, value)

    db.refresh(column)
    logger.info(f"Updated column {column_id} in project {project_id}")
    return column


def delete_column(db: Session, actor_id: UUID, project_id: UUID, column_id: UUID) -> None:
    """
    Delete an empty column. MANAGER or above.

    Raises:
        BadRequestError: If any task still sits in the column
    """
    with atomic(db):
        require_project_role(db, project_id, actor_id, ProjectRole.MANAGER, lock=True)
        column = _get_column(db, project_id, column_id)
        task_count = (
            db.query(func.count(models.Task.id))
            .filter(models.Task.column_id == column_id)
            .scalar()
        )
        if task_count:
            logger.warning(f"Refused to delete column {column_id}: {task_count} task(s) remain")
            raise BadRequestError("Cannot delete column with tasks. Move or delete the tasks first")
        db.delete(column)

    logger.info(f"Deleted column {column_id} from project {project_id}")


def reorder_columns(
    db: Session,
    actor_id: UUID,
    project_id: UUID,
    orders: Iterable[tuple[UUID, int]],
) -> list[models.BoardColumn]:
    """
    Apply a batch of (column id, order) pairs atomically. MANAGER or above.

    Raises:
        BadRequestError: If an id is not a column of this project's board, or the
            resulting orders would not be unique
    """
    orders = list(orders)
    with atomic(db):
        require_project_role(db, project_id, actor_id, ProjectRole.MANAGER, lock=True)
        board = get_board(db, project_id)
        columns = {c.id: c for c in _board_columns(db, board.id, lock=True)}

        final = {column_id: column.order for column_id, column in columns.items()}
        for column_id, order in orders:
            if column_id not in columns:
                raise BadRequestError(f"Column {column_id} does not belong to this project")
            final[column_id] = order
        if len(set(final.values())) != len(final):
            raise BadRequestError("Column orders must be unique")

        for column_id, order in orders:
            columns[column_id].order = order

    logger.info(f"Reordered {len(orders)} column(s) in project {project_id}")
    return _board_columns(db, board.id)
