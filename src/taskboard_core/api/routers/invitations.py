"""Invitation endpoints addressed by token (organization and project)."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ... import models, organizations, projects, schemas
from ...database import get_db
from ...integrations import EventPublisher
from ..dependencies import get_current_user, get_event_publisher

logger = logging.getLogger("taskboard-core.api.invitations")

router = APIRouter(tags=["invitations"])


@router.get("/organization/{token}", response_model=schemas.OrganizationInvitationDetails)
def get_organization_invitation(token: str, db: Session = Depends(get_db)):
    """
    Look up a pending invitation by token.

    Expired invitations are marked EXPIRED and reported as a bad request.
    """
    return organizations.get_invitation_by_token(db, token)


@router.post("/organization/{token}/accept", response_model=schemas.OrganizationMemberResponse)
def accept_organization_invitation(
    token: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Join the organization. The current user's email must match the invitation."""
    return organizations.accept_invitation(db, user.id, token)


@router.post("/organization/{token}/reject", response_model=schemas.OrganizationInvitationResponse)
def reject_organization_invitation(
    token: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return organizations.reject_invitation(db, user.id, token)


@router.get("/project/{token}", response_model=schemas.ProjectInvitationResponse)
def get_project_invitation(token: str, db: Session = Depends(get_db)):
    return projects.get_invitation_by_token(db, token)


@router.post("/project/{token}/accept", response_model=schemas.ProjectMemberResponse)
def accept_project_invitation(
    token: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    return projects.accept_invitation(db, user.id, token, publisher=publisher)


@router.post("/project/{token}/reject", response_model=schemas.ProjectInvitationResponse)
def reject_project_invitation(
    token: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return projects.reject_invitation(db, user.id, token)
