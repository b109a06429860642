"""Organizations API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ... import models, organizations, schemas
from ...database import get_db
from ...integrations import MailSender
from ..dependencies import get_current_user, get_mailer

logger = logging.getLogger("taskboard-core.api.organizations")

router = APIRouter(tags=["organizations"])


@router.post("/", response_model=schemas.OrganizationResponse, status_code=201)
def create_organization(
    data: schemas.OrganizationCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """
    Create a new organization owned by the current user.

    The slug is generated from the name. A user may own a limited number of
    organizations.
    """
    organization = organizations.create(db, user.id, **data.model_dump())
    return schemas.to_organization_response(organization, models.OrganizationRole.OWNER)


@router.get("/", response_model=list[schemas.OrganizationResponse])
def list_organizations(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """List active organizations the current user belongs to, with their role."""
    return [
        schemas.to_organization_response(organization, role)
        for organization, role in organizations.find_all(db, user.id)
    ]


@router.get("/needs-organization", response_model=schemas.NeedsOrganizationResponse)
def needs_organization(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Whether the current user still has to create or join an organization."""
    return schemas.NeedsOrganizationResponse(
        needs_organization=organizations.user_needs_organization(db, user.id)
    )


@router.get("/slug/{slug}", response_model=schemas.OrganizationResponse)
def get_organization_by_slug(
    slug: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organization = organizations.find_by_slug(db, user.id, slug)
    return schemas.to_organization_response(
        organization, organizations.get_role(db, organization.id, user.id)
    )


@router.get("/{organization_id}", response_model=schemas.OrganizationResponse)
def get_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organization = organizations.find_by_id(db, user.id, organization_id)
    return schemas.to_organization_response(
        organization, organizations.get_role(db, organization_id, user.id)
    )


@router.patch("/{organization_id}", response_model=schemas.OrganizationResponse)
def update_organization(
    organization_id: UUID,
    data: schemas.OrganizationUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Update organization details. Requires ADMIN or above."""
    organization = organizations.update(db, user.id, organization_id, data.model_dump(exclude_unset=True))
    return schemas.to_organization_response(
        organization, organizations.get_role(db, organization_id, user.id)
    )


@router.patch("/{organization_id}/slug", response_model=schemas.OrganizationResponse)
def update_organization_slug(
    organization_id: UUID,
    data: schemas.OrganizationSlugUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Change the organization slug. Owner only."""
    organization = organizations.update_slug(db, user.id, organization_id, data.slug)
    return schemas.to_organization_response(organization, models.OrganizationRole.OWNER)


@router.patch("/{organization_id}/logo", response_model=schemas.OrganizationResponse)
def update_organization_logo(
    organization_id: UUID,
    data: schemas.OrganizationLogoUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organization = organizations.upload_logo(db, user.id, organization_id, data.url)
    return schemas.to_organization_response(
        organization, organizations.get_role(db, organization_id, user.id)
    )


@router.delete("/{organization_id}", status_code=204)
def delete_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Delete an organization. Owner only, and only once it has no projects."""
    organizations.delete(db, user.id, organization_id)


# Settings

@router.get("/{organization_id}/settings", response_model=schemas.OrganizationSettingsResponse)
def get_organization_settings(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return organizations.get_organization_settings(db, user.id, organization_id)


@router.patch("/{organization_id}/settings", response_model=schemas.OrganizationSettingsResponse)
def update_organization_settings(
    organization_id: UUID,
    data: schemas.OrganizationSettingsUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Update membership policy. Requires ADMIN or above."""
    return organizations.update_settings(db, user.id, organization_id, data.model_dump(exclude_unset=True))


# Members

@router.get("/{organization_id}/members", response_model=list[schemas.OrganizationMemberResponse])
def list_organization_members(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return organizations.get_members(db, user.id, organization_id)


@router.post(
    "/{organization_id}/members",
    response_model=schemas.OrganizationMemberResponse,
    status_code=201,
)
def add_organization_member(
    organization_id: UUID,
    data: schemas.OrganizationMemberCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """
    Add an existing user to the organization.

    - **user_id**: UUID of the user to add
    - **role**: Any role except OWNER
    """
    return organizations.add_member(db, user.id, organization_id, data.user_id, data.role)


@router.patch("/{organization_id}/members/{user_id}", response_model=schemas.OrganizationMemberResponse)
def update_organization_member(
    organization_id: UUID,
    user_id: UUID,
    data: schemas.OrganizationMemberUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Change a member's role. Owner only."""
    return organizations.update_member_role(db, user.id, organization_id, user_id, data.role)


@router.delete("/{organization_id}/members/{user_id}", status_code=204)
def remove_organization_member(
    organization_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organizations.remove_member(db, user.id, organization_id, user_id)


@router.post("/{organization_id}/transfer-ownership", response_model=schemas.OrganizationMemberResponse)
def transfer_ownership(
    organization_id: UUID,
    data: schemas.OwnershipTransfer,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Make another member the owner; the current owner becomes ADMIN."""
    return organizations.transfer_ownership(db, user.id, organization_id, data.new_owner_id)


@router.post("/{organization_id}/switch", response_model=schemas.OrganizationResponse)
def switch_organization(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organization = organizations.switch_organization(db, user.id, organization_id)
    return schemas.to_organization_response(
        organization, organizations.get_role(db, organization_id, user.id)
    )


# Invitations

@router.get(
    "/{organization_id}/invitations",
    response_model=list[schemas.OrganizationInvitationResponse],
)
def list_invitations(
    organization_id: UUID,
    status: Optional[models.InvitationStatus] = Query(models.InvitationStatus.PENDING),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return organizations.get_invitations(db, user.id, organization_id, status)


@router.post(
    "/{organization_id}/invitations",
    response_model=schemas.OrganizationInvitationResponse,
    status_code=201,
)
def create_invitation(
    organization_id: UUID,
    data: schemas.OrganizationInvitationCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    mailer: MailSender = Depends(get_mailer),
):
    """
    Invite an email address. The invitation expires after a week.

    The invitation email is sent after the response has been returned.
    """
    return organizations.create_invitation(
        db,
        user.id,
        organization_id,
        data.email,
        data.role,
        mailer=mailer,
        schedule=background_tasks.add_task,
    )


@router.delete("/{organization_id}/invitations/{invitation_id}", status_code=204)
def cancel_invitation(
    organization_id: UUID,
    invitation_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    organizations.cancel_invitation(db, user.id, organization_id, invitation_id)


# Read models

@router.get("/{organization_id}/dashboard", response_model=schemas.OrganizationDashboardStats)
def get_dashboard(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    stats = organizations.get_dashboard_stats(db, user.id, organization_id)
    return schemas.OrganizationDashboardStats(
        project_count=stats["project_count"],
        member_count=stats["member_count"],
        total_tasks=stats["total_tasks"],
        completed_tasks=stats["completed_tasks"],
        tasks_by_status=stats["tasks_by_status"],
        recent_activity=[schemas.ActivityResponse.model_validate(a) for a in stats["recent_activity"]],
        recent_projects=[schemas.ProjectResponse.model_validate(p) for p in stats["recent_projects"]],
    )


@router.get("/{organization_id}/projects", response_model=list[schemas.ProjectResponse])
def list_organization_projects(
    organization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return organizations.get_projects(db, user.id, organization_id)
