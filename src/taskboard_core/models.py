"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Table,
    JSON,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class OrganizationRole(str, enum.Enum):
    """Organization member role, ascending privilege."""

    GUEST = "GUEST"
    MEMBER = "MEMBER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"


class ProjectRole(str, enum.Enum):
    """Project member role, ascending privilege.

    There is no OWNER tier: Project.owner_id is the sole owner and is checked
    separately from the hierarchy.
    """

    GUEST = "GUEST"
    MEMBER = "MEMBER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class InvitationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ProjectStatus(str, enum.Enum):
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class TaskStatus(str, enum.Enum):
    """Task lifecycle status; also the status a board column is bound to."""

    BACKLOG = "BACKLOG"
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


# Statuses that count as finished for overdue/reminder sweeps
CLOSED_TASK_STATUSES = (TaskStatus.DONE, TaskStatus.CANCELLED)


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ActivityType(str, enum.Enum):
    """Activity log entry type."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    MOVED = "MOVED"
    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"
    COMMENTED = "COMMENTED"
    DELETED = "DELETED"


class NotificationType(str, enum.Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_DUE_SOON = "TASK_DUE_SOON"
    PROJECT_MEMBER_ADDED = "PROJECT_MEMBER_ADDED"


# =============================================================================
# Identity
# =============================================================================


class User(Base):
    """
    User identity.

    Credentials live in the external identity store; the core only needs the
    id, email and display name. Users are deactivated rather than deleted
    while referenced elsewhere.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    avatar = Column(String(500))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    current_organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship(
        "OrganizationMember", back_populates="user", cascade="all, delete-orphan"
    )
    current_organization = relationship("Organization", foreign_keys=[current_organization_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class RefreshToken(Base):
    """Refresh token issued by the identity store; only swept here."""

    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(500), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RefreshToken user_id={self.user_id} expires={self.expires_at}>"


# =============================================================================
# Organizations
# =============================================================================


class Organization(Base):
    """
    Organization model, the tenant boundary.

    Exactly one member holds OWNER at any time. An organization cannot be
    deleted while it still owns projects.
    """

    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text)
    logo = Column(String(500))
    website = Column(String(255))
    industry = Column(String(100))
    size = Column(String(50))
    is_active = Column(Boolean, nullable=False, default=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    members = relationship("OrganizationMember", back_populates="organization", cascade="all, delete-orphan")
    invitations = relationship("OrganizationInvitation", back_populates="organization", cascade="all, delete-orphan")
    settings = relationship(
        "OrganizationSettings",
        back_populates="organization",
        uselist=False,
        cascade="all, delete-orphan",
    )
    projects = relationship("Project", back_populates="organization")

    # Constraints
    __table_args__ = (
        CheckConstraint("slug <> ''", name="non_empty_slug"),
    )

    def __repr__(self) -> str:
        return f"<Organization {self.slug}: {self.name}>"


class OrganizationSettings(Base):
    """Per-organization membership policy."""

    __tablename__ = "organization_settings"

    id = Column(Uuid, primary_key=True, default=uuid4)
    organization_id = Column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    allow_member_invites = Column(Boolean, nullable=False, default=False)
    default_project_role = Column(
        Enum(ProjectRole, values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.MEMBER,
    )
    require_approval_to_join = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="settings")

    def __repr__(self) -> str:
        return f"<OrganizationSettings {self.organization_id}>"


class OrganizationMember(Base):
    """
    Junction table linking users to organizations with roles.
    """

    __tablename__ = "organization_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        Enum(OrganizationRole, values_callable=_enum_values),
        nullable=False,
        default=OrganizationRole.MEMBER,
        index=True,
    )
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # Constraints
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="unique_org_user"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationMember {self.role.value}>"


class OrganizationInvitation(Base):
    """Token-bearing, time-limited offer of organization membership."""

    __tablename__ = "organization_invitations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(
        Enum(OrganizationRole, values_callable=_enum_values),
        nullable=False,
        default=OrganizationRole.MEMBER,
    )
    token = Column(String(100), nullable=False, unique=True, index=True)
    status = Column(
        Enum(InvitationStatus, values_callable=_enum_values),
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True,
    )
    sender_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    organization = relationship("Organization", back_populates="invitations")
    sender = relationship("User")

    __table_args__ = (
        CheckConstraint("role <> 'OWNER'", name="invitation_not_owner"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationInvitation {self.email} {self.status.value}>"


# =============================================================================
# Projects
# =============================================================================


class Project(Base):
    """
    Project inside an organization.

    owner_id is the project owner, privileged above every ProjectRole.
    """

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True)
    owner_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Core fields
    key = Column(String(10), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    color = Column(String(20))
    status = Column(
        Enum(ProjectStatus, values_callable=_enum_values),
        nullable=False,
        default=ProjectStatus.ACTIVE,
        index=True,
    )
    start_date = Column(DateTime)
    end_date = Column(DateTime)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="projects")
    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    invitations = relationship("ProjectInvitation", back_populates="project", cascade="all, delete-orphan")
    boards = relationship("Board", back_populates="project", cascade="all, delete-orphan")
    labels = relationship("Label", back_populates="project", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    task_sequence = relationship(
        "TaskSequence", back_populates="project", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.key}: {self.name}>"


class ProjectMember(Base):
    """
    Junction table linking users to projects with roles.
    """

    __tablename__ = "project_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.MEMBER,
        index=True,
    )
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User", backref="project_memberships")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember {self.role.value}>"


class ProjectInvitation(Base):
    """Invitation for an email address that has no account yet."""

    __tablename__ = "project_invitations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, values_callable=_enum_values),
        nullable=False,
        default=ProjectRole.MEMBER,
    )
    token = Column(String(100), nullable=False, unique=True, index=True)
    status = Column(
        Enum(InvitationStatus, values_callable=_enum_values),
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True,
    )
    inviter_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project", back_populates="invitations")
    inviter = relationship("User")

    def __repr__(self) -> str:
        return f"<ProjectInvitation {self.email} {self.status.value}>"


class TaskSequence(Base):
    """
    Tracks the next task number per project.

    Locked for update while a task is created so concurrent creates never
    share a number, and numbers are never handed out twice even after the
    newest task is deleted.
    """

    __tablename__ = "task_sequences"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True)
    next_number = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="task_sequence")

    __table_args__ = (
        CheckConstraint("next_number > 0", name="chk_next_task_number_positive"),
    )

    def __repr__(self) -> str:
        return f"<TaskSequence {self.project_id} next={self.next_number}>"


# =============================================================================
# Boards
# =============================================================================


class Board(Base):
    __tablename__ = "boards"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project", back_populates="boards")
    columns = relationship(
        "BoardColumn",
        back_populates="board",
        cascade="all, delete-orphan",
        order_by="BoardColumn.order",
    )

    def __repr__(self) -> str:
        return f"<Board {self.name}>"


class BoardColumn(Base):
    """Ordered bucket on a board; tasks moved into it take its status."""

    __tablename__ = "board_columns"

    id = Column(Uuid, primary_key=True, default=uuid4)
    board_id = Column(Uuid, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.TODO,
    )
    color = Column(String(20))
    wip_limit = Column(Integer, nullable=True)  # advisory only
    created_at = Column(DateTime, nullable=False, default=utcnow)

    board = relationship("Board", back_populates="columns")
    tasks = relationship("Task", back_populates="column")

    def __repr__(self) -> str:
        return f"<BoardColumn {self.name} ({self.status.value})>"


class Label(Base):
    __tablename__ = "labels"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    color = Column(String(20), nullable=False)

    project = relationship("Project", back_populates="labels")

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="unique_project_label"),
    )

    def __repr__(self) -> str:
        return f"<Label {self.name}>"


# =============================================================================
# Tasks
# =============================================================================

# Association table for task assignees (many-to-many)
task_assignees = Table(
    "task_assignees",
    Base.metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("task_id", Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("assigned_at", DateTime, nullable=False, default=utcnow),
    UniqueConstraint("task_id", "user_id", name="uq_task_assignee"),
)

task_labels = Table(
    "task_labels",
    Base.metadata,
    Column("task_id", Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("label_id", Uuid, ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True),
)


class Task(Base):
    """
    Task on a project board.

    status and column_id move together through the move operation; a plain
    update may change either without touching the other.
    """

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    task_number = Column(Integer, nullable=False)

    # Core task fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        Enum(TaskStatus, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.TODO,
        index=True,
    )
    priority = Column(
        Enum(TaskPriority, values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
        index=True,
    )

    # Board placement
    column_id = Column(Uuid, ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    order = Column(Float, nullable=False, default=0)

    # Scheduling
    due_date = Column(DateTime, nullable=True, index=True)
    start_date = Column(DateTime, nullable=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)

    # Audit fields
    creator_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    column = relationship("BoardColumn", back_populates="tasks")
    creator = relationship("User", foreign_keys=[creator_id])
    parent = relationship("Task", remote_side=[id], back_populates="subtasks")
    subtasks = relationship(
        "Task",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="Task.order",
    )
    assignees = relationship(
        "User",
        secondary=task_assignees,
        primaryjoin="Task.id == task_assignees.c.task_id",
        secondaryjoin="User.id == task_assignees.c.user_id",
        backref="assigned_tasks",
    )
    labels = relationship("Label", secondary=task_labels)
    comments = relationship("Comment", back_populates="task", cascade="all, delete-orphan")
    attachments = relationship("Attachment", back_populates="task", cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="task", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("project_id", "task_number", name="uq_project_task_number"),
    )

    def __repr__(self) -> str:
        return f"<Task #{self.task_number}: {self.title[:30]}>"


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")
    parent = relationship("Comment", remote_side=[id], back_populates="replies")
    replies = relationship(
        "Comment",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )

    def __repr__(self) -> str:
        return f"<Comment {self.id} on {self.task_id}>"


class Attachment(Base):
    """File stored in the external blob store; only its URL is kept."""

    __tablename__ = "attachments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    filename = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    public_id = Column(String(255), nullable=True)
    size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    task = relationship("Task", back_populates="attachments")
    uploaded_by = relationship("User")

    def __repr__(self) -> str:
        return f"<Attachment {self.filename}>"


# =============================================================================
# Activity & notifications
# =============================================================================


class Activity(Base):
    """
    Immutable, append-only audit entry for a state transition.

    task_id is empty for entries that outlive their task (deletions).
    """

    __tablename__ = "activities"

    id = Column(Uuid, primary_key=True, default=uuid4)
    type = Column(Enum(ActivityType, values_callable=_enum_values), nullable=False, index=True)
    description = Column(String(500), nullable=False)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    task = relationship("Task", back_populates="activities")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Activity {self.type.value}: {self.description[:30]}>"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(NotificationType, values_callable=_enum_values), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Notification {self.type.value} for {self.user_id}>"
