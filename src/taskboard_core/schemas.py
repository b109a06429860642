"""Pydantic schemas for request/response validation.

Response schemas read ORM rows through ``from_attributes``; the composite
responses (dashboard, stats, task detail, member-add result) are assembled by
the explicit mapping functions at the bottom of this module.
"""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import (
    ActivityType,
    InvitationStatus,
    NotificationType,
    OrganizationRole,
    ProjectRole,
    ProjectStatus,
    TaskPriority,
    TaskStatus,
)


# ============================================================================
# Users
# ============================================================================

class UserSummary(BaseModel):
    """Public view of a user embedded in other responses."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    avatar: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Organization Schemas
# ============================================================================

class OrganizationBase(BaseModel):
    """Base schema for organization fields."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    website: Optional[str] = Field(None, max_length=255)
    industry: Optional[str] = Field(None, max_length=100)
    size: Optional[str] = Field(None, max_length=50)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (slug is generated from the name)."""

    logo: Optional[str] = Field(None, max_length=500)


class OrganizationUpdate(BaseModel):
    """Schema for updating an organization. Only provided fields change."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    website: Optional[str] = Field(None, max_length=255)
    industry: Optional[str] = Field(None, max_length=100)
    size: Optional[str] = Field(None, max_length=50)


class OrganizationSlugUpdate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)


class OrganizationLogoUpdate(BaseModel):
    """URL returned by the blob store for an uploaded logo."""

    url: str = Field(..., min_length=1, max_length=500)


class OrganizationSettingsUpdate(BaseModel):
    allow_member_invites: Optional[bool] = None
    default_project_role: Optional[ProjectRole] = None
    require_approval_to_join: Optional[bool] = None


class OrganizationSettingsResponse(BaseModel):
    organization_id: UUID
    allow_member_invites: bool
    default_project_role: ProjectRole
    require_approval_to_join: bool

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""

    id: UUID
    slug: str
    logo: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    # Role of the requesting user, when known
    role: Optional[OrganizationRole] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class OrganizationMemberCreate(BaseModel):
    user_id: UUID
    role: OrganizationRole = OrganizationRole.MEMBER


class OrganizationMemberUpdate(BaseModel):
    role: OrganizationRole


class OrganizationMemberResponse(BaseModel):
    id: UUID
    organization_id: UUID
    user: UserSummary
    role: OrganizationRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class OwnershipTransfer(BaseModel):
    new_owner_id: UUID


class NeedsOrganizationResponse(BaseModel):
    needs_organization: bool


class OrganizationInvitationCreate(BaseModel):
    email: EmailStr
    role: OrganizationRole = OrganizationRole.MEMBER


class OrganizationInvitationResponse(BaseModel):
    id: UUID
    organization_id: UUID
    email: str
    role: OrganizationRole
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime
    sender: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class OrganizationSummary(BaseModel):
    id: UUID
    name: str
    slug: str
    logo: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OrganizationInvitationDetails(OrganizationInvitationResponse):
    """Invitation looked up by token, with the inviting organization."""

    organization: OrganizationSummary


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ProjectCreate(ProjectBase):
    organization_id: UUID
    key: str = Field(..., min_length=1, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    status: ProjectStatus = ProjectStatus.ACTIVE


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)
    status: Optional[ProjectStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ProjectResponse(ProjectBase):
    id: UUID
    organization_id: UUID
    owner_id: UUID
    key: str
    status: ProjectStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectListResponse(BaseModel):
    items: list[ProjectResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class ProjectMemberCreate(BaseModel):
    email: EmailStr
    role: ProjectRole = ProjectRole.MEMBER


class ProjectMemberUpdate(BaseModel):
    role: ProjectRole


class ProjectMemberResponse(BaseModel):
    id: UUID
    project_id: UUID
    user: UserSummary
    role: ProjectRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectInvitationResponse(BaseModel):
    id: UUID
    project_id: UUID
    email: str
    role: ProjectRole
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class AddProjectMemberResult(BaseModel):
    """Either a direct membership or, for unknown emails, a pending invitation."""

    type: Literal["invitation", "member"]
    member: Optional[ProjectMemberResponse] = None
    invitation: Optional[ProjectInvitationResponse] = None


class ColumnCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    status: TaskStatus = TaskStatus.TODO
    color: Optional[str] = Field(None, max_length=20)
    order: Optional[int] = Field(None, ge=0)
    wip_limit: Optional[int] = Field(None, ge=1)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    status: Optional[TaskStatus] = None
    color: Optional[str] = Field(None, max_length=20)
    wip_limit: Optional[int] = Field(None, ge=1)


class ColumnOrder(BaseModel):
    id: UUID
    order: int = Field(..., ge=0)


class ColumnReorder(BaseModel):
    columns: list[ColumnOrder] = Field(..., min_length=1)

    @field_validator("columns")
    @classmethod
    def unique_ids(cls, v: list[ColumnOrder]) -> list[ColumnOrder]:
        if len({c.id for c in v}) != len(v):
            raise ValueError("Each column may appear only once")
        return v


class ColumnResponse(BaseModel):
    id: UUID
    board_id: UUID
    name: str
    order: int
    status: TaskStatus
    color: Optional[str] = None
    wip_limit: Optional[int] = None
    task_count: int = 0

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class LabelResponse(BaseModel):
    id: UUID
    name: str
    color: str

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Activity & Notification Schemas
# ============================================================================

class ActivityResponse(BaseModel):
    id: UUID
    type: ActivityType
    description: str
    task_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    user: Optional[UserSummary] = None
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)


class NotificationResponse(BaseModel):
    id: UUID
    type: NotificationType
    title: str
    message: str
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)


class OrganizationDashboardStats(BaseModel):
    project_count: int
    member_count: int
    total_tasks: int
    completed_tasks: int
    tasks_by_status: dict[str, int]
    recent_activity: list[ActivityResponse]
    recent_projects: list[ProjectResponse]


class ProjectStats(BaseModel):
    total_tasks: int
    tasks_by_status: dict[str, int]
    tasks_by_priority: dict[str, int]
    recent_activity: list[ActivityResponse]


# ============================================================================
# Task Schemas
# ============================================================================

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    column_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    assignee_ids: list[UUID] = Field(default_factory=list)
    label_ids: list[UUID] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    """Free-form patch; column_id here does not change status."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    column_id: Optional[UUID] = None
    order: Optional[float] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    label_ids: Optional[list[UUID]] = None


class TaskMove(BaseModel):
    column_id: UUID
    order: float = 0


class TaskAssign(BaseModel):
    user_id: UUID


class TaskResponse(BaseModel):
    id: UUID
    project_id: UUID
    task_number: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    column_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    order: float
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    creator_id: Optional[UUID] = None
    assignees: list[UserSummary] = Field(default_factory=list)
    labels: list[LabelResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskListResponse(BaseModel):
    items: list[TaskResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_id: Optional[UUID] = None


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    id: UUID
    task_id: UUID
    parent_id: Optional[UUID] = None
    content: str
    user: UserSummary
    created_at: datetime
    updated_at: datetime
    replies: list["CommentResponse"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AttachmentCreate(BaseModel):
    """Metadata of a file already stored by the blob store."""

    filename: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=1000)
    public_id: Optional[str] = Field(None, max_length=255)
    size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = Field(None, max_length=100)


class AttachmentResponse(BaseModel):
    id: UUID
    task_id: UUID
    filename: str
    url: str
    public_id: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_by_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskDetailResponse(TaskResponse):
    subtasks: list[TaskResponse] = Field(default_factory=list)
    comments: list[CommentResponse] = Field(default_factory=list)
    attachments: list[AttachmentResponse] = Field(default_factory=list)
    activities: list[ActivityResponse] = Field(default_factory=list)


# ============================================================================
# Mapping helpers
# ============================================================================

def to_organization_response(organization, role=None) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    if role is not None:
        response.role = role.value if hasattr(role, "value") else role
    return response


def to_column_response(column) -> ColumnResponse:
    response = ColumnResponse.model_validate(column)
    response.task_count = len(column.tasks)
    return response


def to_comment_response(comment) -> CommentResponse:
    """Map a top-level comment and its (single level of) replies."""
    return CommentResponse(
        id=comment.id,
        task_id=comment.task_id,
        parent_id=comment.parent_id,
        content=comment.content,
        user=UserSummary.model_validate(comment.user),
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        replies=[
            CommentResponse(
                id=reply.id,
                task_id=reply.task_id,
                parent_id=reply.parent_id,
                content=reply.content,
                user=UserSummary.model_validate(reply.user),
                created_at=reply.created_at,
                updated_at=reply.updated_at,
            )
            for reply in comment.replies
        ],
    )


def to_task_detail(task, activities) -> TaskDetailResponse:
    """Build the full task view: subtasks, threaded comments, attachments, recent activity."""
    base = TaskResponse.model_validate(task).model_dump()
    return TaskDetailResponse(
        **base,
        subtasks=[TaskResponse.model_validate(t) for t in task.subtasks],
        comments=[
            to_comment_response(c)
            for c in sorted(task.comments, key=lambda c: c.created_at, reverse=True)
            if c.parent_id is None
        ],
        attachments=[AttachmentResponse.model_validate(a) for a in task.attachments],
        activities=[ActivityResponse.model_validate(a) for a in activities],
    )


def to_add_member_result(kind: str, row) -> AddProjectMemberResult:
    if kind == "invitation":
        return AddProjectMemberResult(
            type="invitation", invitation=ProjectInvitationResponse.model_validate(row)
        )
    return AddProjectMemberResult(type="member", member=ProjectMemberResponse.model_validate(row))


def task_payload(task) -> dict:
    """JSON-ready task representation for push events."""
    return TaskResponse.model_validate(task).model_dump(mode="json")


def project_payload(project) -> dict:
    return ProjectResponse.model_validate(project).model_dump(mode="json")


def member_payload(member) -> dict:
    return ProjectMemberResponse.model_validate(member).model_dump(mode="json")


def comment_payload(comment) -> dict:
    return CommentResponse(
        id=comment.id,
        task_id=comment.task_id,
        parent_id=comment.parent_id,
        content=comment.content,
        user=UserSummary.model_validate(comment.user),
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    ).model_dump(mode="json")
