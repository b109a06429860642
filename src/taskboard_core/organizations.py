"""Organization authorization service.

Every operation resolves the acting user's membership first and fails before
touching any row when the role gate is not met. Mutations run inside
``database.atomic`` and lock the membership rows they read, so a concurrent
demotion cannot be raced by a stale role check.
"""
import logging
import re
import secrets
from datetime import timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models
from .activity import queue_mail
from .config import get_settings
from .database import atomic
from .errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
    QuotaExceededError,
    reject_null_fields,
)
from .integrations import MailSender, organization_invitation_email
from .models import InvitationStatus, OrganizationRole, utcnow
from .roles import ORG_ROLE_HIERARCHY, has_min_org_role

logger = logging.getLogger("taskboard-core.organizations")

SLUG_MAX_LENGTH = 50

# Fields a plain update may patch; slug and logo have their own operations
UPDATABLE_FIELDS = ("name", "description", "website", "industry", "size")
REQUIRED_FIELDS = ("name",)


# ============================================================================
# Helpers
# ============================================================================

def slugify(name: str) -> str:
    """
    Turn a display name into a URL slug.

    "My Cool Org!!" -> "my-cool-org"
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].strip("-")


def generate_unique_slug(db: Session, name: str, exclude_id: Optional[UUID] = None) -> str:
    """
    Slugify ``name`` and append -1, -2, ... until no other organization uses it.

    Args:
        db: Database session
        name: Name (or requested slug) to derive the slug from
        exclude_id: Organization whose own slug does not count as a collision
    """
    base = slugify(name) or "organization"
    slug = base
    counter = 1
    while True:
        query = db.query(models.Organization.id).filter(models.Organization.slug == slug)
        if exclude_id is not None:
            query = query.filter(models.Organization.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base}-{counter}"
        counter += 1


def _get_organization(db: Session, organization_id: UUID) -> models.Organization:
    organization = (
        db.query(models.Organization)
        .filter(models.Organization.id == organization_id)
        .first()
    )
    if not organization:
        raise NotFoundError("Organization not found")
    return organization


def get_membership(
    db: Session,
    organization_id: UUID,
    user_id: UUID,
    lock: bool = False,
) -> Optional[models.OrganizationMember]:
    """Return the membership row for (organization, user), or None."""
    query = db.query(models.OrganizationMember).filter(
        models.OrganizationMember.organization_id == organization_id,
        models.OrganizationMember.user_id == user_id,
    )
    if lock:
        query = query.with_for_update()
    return query.first()


def get_role(db: Session, organization_id: UUID, user_id: UUID) -> Optional[OrganizationRole]:
    member = get_membership(db, organization_id, user_id)
    return member.role if member else None


def _require_member(
    db: Session,
    organization_id: UUID,
    actor_id: UUID,
    lock: bool = False,
) -> models.OrganizationMember:
    _get_organization(db, organization_id)
    member = get_membership(db, organization_id, actor_id, lock=lock)
    if not member:
        logger.warning(f"User {actor_id} denied access to organization {organization_id}: not a member")
        raise ForbiddenError("Not a member of this organization")
    return member


def _require_role(
    db: Session,
    organization_id: UUID,
    actor_id: UUID,
    minimum: OrganizationRole,
    lock: bool = False,
) -> models.OrganizationMember:
    member = _require_member(db, organization_id, actor_id, lock=lock)
    if not has_min_org_role(member.role, minimum):
        logger.warning(
            f"User {actor_id} ({member.role.value}) denied in organization {organization_id}: "
            f"requires {minimum.value}"
        )
        raise ForbiddenError("Insufficient permissions")
    return member


def _require_owner(
    db: Session,
    organization_id: UUID,
    actor_id: UUID,
    lock: bool = False,
) -> models.OrganizationMember:
    member = _require_member(db, organization_id, actor_id, lock=lock)
    if member.role != OrganizationRole.OWNER:
        logger.warning(f"User {actor_id} denied owner-only action in organization {organization_id}")
        raise ForbiddenError("Only the organization owner can perform this action")
    return member


def _load_settings(db: Session, organization_id: UUID) -> models.OrganizationSettings:
    """Fetch settings, adding a default row to the session if none exists yet."""
    org_settings = (
        db.query(models.OrganizationSettings)
        .filter(models.OrganizationSettings.organization_id == organization_id)
        .first()
    )
    if org_settings is None:
        org_settings = models.OrganizationSettings(
            organization_id=organization_id,
            allow_member_invites=False,
            default_project_role=models.ProjectRole.MEMBER,
            require_approval_to_join=False,
        )
        db.add(org_settings)
        db.flush()
    return org_settings


def _require_invite_permission(
    db: Session, organization_id: UUID, actor_id: UUID
) -> models.OrganizationMember:
    """ADMIN and above, or MEMBER and above when member invites are enabled."""
    member = _require_member(db, organization_id, actor_id, lock=True)
    if has_min_org_role(member.role, OrganizationRole.ADMIN):
        return member
    org_settings = _load_settings(db, organization_id)
    if org_settings.allow_member_invites and has_min_org_role(member.role, OrganizationRole.MEMBER):
        return member
    logger.warning(f"User {actor_id} ({member.role.value}) may not invite to organization {organization_id}")
    raise ForbiddenError("Insufficient permissions to invite members")


def _count_owned(db: Session, user_id: UUID) -> int:
    return (
        db.query(func.count(models.OrganizationMember.id))
        .filter(
            models.OrganizationMember.user_id == user_id,
            models.OrganizationMember.role == OrganizationRole.OWNER,
        )
        .scalar()
    )


def _get_user(db: Session, user_id: UUID, lock: bool = False) -> models.User:
    query = db.query(models.User).filter(models.User.id == user_id)
    if lock:
        query = query.with_for_update()
    user = query.first()
    if not user:
        raise NotFoundError("User not found")
    return user


# ============================================================================
# Organizations
# ============================================================================

def create(
    db: Session,
    actor_id: UUID,
    name: str,
    description: Optional[str] = None,
    logo: Optional[str] = None,
    website: Optional[str] = None,
    industry: Optional[str] = None,
    size: Optional[str] = None,
) -> models.Organization:
    """
    Create an organization owned by the acting user.

    The organization, the OWNER membership and the default settings are
    written in one transaction, and the actor's current organization is
    switched to the new one.

    Raises:
        QuotaExceededError: If the actor already owns the maximum number of organizations
    """
    cap = get_settings().max_owned_organizations
    try:
        with atomic(db):
            # Lock the actor row so concurrent creates serialize on the owner cap
            user = _get_user(db, actor_id, lock=True)
            if _count_owned(db, actor_id) >= cap:
                logger.warning(f"User {actor_id} hit the owned organization cap ({cap})")
                raise QuotaExceededError(f"You can only own up to {cap} organizations")

            organization = models.Organization(
                name=name,
                slug=generate_unique_slug(db, name),
                description=description,
                logo=logo,
                website=website,
                industry=industry,
                size=size,
            )
            db.add(organization)
            db.flush()

            db.add(models.OrganizationMember(
                organization_id=organization.id,
                user_id=actor_id,
                role=OrganizationRole.OWNER,
            ))
            db.add(models.OrganizationSettings(
                organization_id=organization.id,
                allow_member_invites=False,
                default_project_role=models.ProjectRole.MEMBER,
                require_approval_to_join=False,
            ))
            user.current_organization_id = organization.id
    except IntegrityError:
        logger.warning(f"Slug collision while creating organization '{name}'", exc_info=True)
        raise ConflictError("An organization with this slug already exists") from None

    db.refresh(organization)
    logger.info(f"Created organization '{organization.name}' ({organization.slug}) owned by {actor_id}")
    return organization


def find_all(db: Session, actor_id: UUID) -> list[tuple[models.Organization, OrganizationRole]]:
    """Active organizations the user belongs to, newest first, with the user's role."""
    rows = (
        db.query(models.Organization, models.OrganizationMember.role)
        .join(models.OrganizationMember)
        .filter(
            models.OrganizationMember.user_id == actor_id,
            models.Organization.is_active.is_(True),
        )
        .order_by(models.Organization.created_at.desc())
        .all()
    )
    return [(organization, role) for organization, role in rows]


def find_by_id(db: Session, actor_id: UUID, organization_id: UUID) -> models.Organization:
    """
    Get an organization the actor belongs to.

    Raises:
        NotFoundError: If the organization does not exist
        ForbiddenError: If the actor is not a member
    """
    _require_member(db, organization_id, actor_id)
    return _get_organization(db, organization_id)


def find_by_slug(db: Session, actor_id: UUID, slug: str) -> models.Organization:
    organization = db.query(models.Organization).filter(models.Organization.slug == slug).first()
    if not organization:
        raise NotFoundError("Organization not found")
    _require_member(db, organization.id, actor_id)
    return organization


def update(db: Session, actor_id: UUID, organization_id: UUID, changes: dict) -> models.Organization:
    """
    Patch organization fields. Requires ADMIN or above.

    Args:
        changes: Field -> new value; only keys in UPDATABLE_FIELDS are accepted
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise BadRequestError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    reject_null_fields(changes, REQUIRED_FIELDS)

    with atomic(db):
        _require_role(db, organization_id, actor_id, OrganizationRole.ADMIN, lock=True)
        organization = _get_organization(db, organization_id)
        for field, value in changes.items():
            setattr(organization, field, value)

    db.refresh(organization)
    logger.info(f"Updated organization {organization_id}: {sorted(changes)}")
    return organization


def update_slug(db: Session, actor_id: UUID, organization_id: UUID, slug: str) -> models.Organization:
    """Change the slug (OWNER only); collisions get a numeric suffix."""
    try:
        with atomic(db):
            _require_owner(db, organization_id, actor_id, lock=True)
            organization = _get_organization(db, organization_id)
            organization.slug = generate_unique_slug(db, slug, exclude_id=organization_id)
    except IntegrityError:
        raise ConflictError("An organization with this slug already exists") from None

    db.refresh(organization)
    logger.info(f"Organization {organization_id} slug changed to {organization.slug}")
    return organization


def upload_logo(db: Session, actor_id: UUID, organization_id: UUID, url: str) -> models.Organization:
    """Store the blob-store URL of a new logo. Requires ADMIN or above."""
    with atomic(db):
        _require_role(db, organization_id, actor_id, OrganizationRole.ADMIN, lock=True)
        organization = _get_organization(db, organization_id)
        organization.logo = url

    db.refresh(organization)
    logger.info(f"Updated logo of organization {organization_id}")
    return organization


def delete(db: Session, actor_id: UUID, organization_id: UUID) -> None:
    """
    Delete an organization (OWNER only).

    Raises:
        PreconditionFailedError: If the organization still owns projects
    """
    with atomic(db):
        _require_owner(db, organization_id, actor_id, lock=True)
        organization = _get_organization(db, organization_id)
        project_count = (
            db.query(func.count(models.Project.id))
            .filter(models.Project.organization_id == organization_id)
            .scalar()
        )
        if project_count:
            logger.warning(f"Refused to delete organization {organization_id}: {project_count} project(s) remain")
            raise PreconditionFailedError(
                "Cannot delete organization with existing projects. Delete or move the projects first."
            )
        db.query(models.User).filter(
            models.User.current_organization_id == organization_id
        ).update({models.User.current_organization_id: None}, synchronize_session=False)
        db.delete(organization)

    logger.info(f"Deleted organization {organization_id}")


def get_organization_settings(db: Session, actor_id: UUID, organization_id: UUID) -> models.OrganizationSettings:
    _require_member(db, organization_id, actor_id)
    with atomic(db):
        org_settings = _load_settings(db, organization_id)
    return org_settings


def update_settings(
    db: Session, actor_id: UUID, organization_id: UUID, changes: dict
) -> models.OrganizationSettings:
    """Upsert organization settings. Requires ADMIN or above."""
    allowed = {"allow_member_invites", "default_project_role", "require_approval_to_join"}
    unknown = set(changes) - allowed
    if unknown:
        raise BadRequestError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

    with atomic(db):
        _require_role(db, organization_id, actor_id, OrganizationRole.ADMIN, lock=True)
        org_settings = _load_settings(db, organization_id)
        for field, value in changes.items():
            if value is not None:
                setattr(org_settings, field, value)

    db.refresh(org_settings)
    logger.info(f"Updated settings of organization {organization_id}")
    return org_settings


# ============================================================================
# Members
# ============================================================================

def get_members(db: Session, actor_id: UUID, organization_id: UUID) -> list[models.OrganizationMember]:
    """Members ordered by role (OWNER first), then by join date."""
    _require_member(db, organization_id, actor_id)
    members = (
        db.query(models.OrganizationMember)
        .options(joinedload(models.OrganizationMember.user))
        .filter(models.OrganizationMember.organization_id == organization_id)
        .order_by(models.OrganizationMember.joined_at)
        .all()
    )
    return sorted(members, key=lambda m: -ORG_ROLE_HIERARCHY.index(m.role))


def add_member(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    user_id: UUID,
    role: OrganizationRole = OrganizationRole.MEMBER,
) -> models.OrganizationMember:
    """
    Add an existing user directly.

    Requires ADMIN, or MEMBER when the organization allows member invites.

    Raises:
        BadRequestError: If role is OWNER (ownership only moves by transfer)
        ConflictError: If the user is already a member
    """
    if role == OrganizationRole.OWNER:
        raise BadRequestError("Cannot add a member as OWNER. Use ownership transfer instead")

    try:
        with atomic(db):
            _require_invite_permission(db, organization_id, actor_id)
            _get_user(db, user_id)
            if get_membership(db, organization_id, user_id):
                raise ConflictError("User is already a member of this organization")
            member = models.OrganizationMember(
                organization_id=organization_id,
                user_id=user_id,
                role=role,
            )
            db.add(member)
    except IntegrityError:
        raise ConflictError("User is already a member of this organization") from None

    db.refresh(member)
    logger.info(f"Added user {user_id} to organization {organization_id} as {role.value}")
    return member


def update_member_role(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    user_id: UUID,
    role: OrganizationRole,
) -> models.OrganizationMember:
    """
    Change a member's role (OWNER only).

    The owner cannot change their own role and OWNER cannot be granted here.
    """
    if user_id == actor_id:
        raise BadRequestError("Cannot change your own role")
    if role == OrganizationRole.OWNER:
        raise BadRequestError("Cannot assign OWNER role. Use ownership transfer instead")

    with atomic(db):
        _require_owner(db, organization_id, actor_id, lock=True)
        member = get_membership(db, organization_id, user_id, lock=True)
        if not member:
            raise NotFoundError("Member not found")
        if member.role == OrganizationRole.OWNER:
            raise BadRequestError("Cannot change the role of the organization owner")
        previous = member.role
        member.role = role

    db.refresh(member)
    logger.info(f"Changed role of {user_id} in organization {organization_id}: {previous.value} -> {role.value}")
    return member


def remove_member(db: Session, actor_id: UUID, organization_id: UUID, user_id: UUID) -> None:
    """
    Remove a member.

    Anyone may leave; removing someone else needs ADMIN or above; the OWNER can
    never be removed. The removed user's current organization is cleared when
    it points here.
    """
    with atomic(db):
        actor = _require_member(db, organization_id, actor_id, lock=True)
        target = actor if user_id == actor_id else get_membership(db, organization_id, user_id, lock=True)
        if not target:
            raise NotFoundError("Member not found")
        if target.role == OrganizationRole.OWNER:
            logger.warning(f"User {actor_id} tried to remove the owner of organization {organization_id}")
            raise BadRequestError("Cannot remove the organization owner. Transfer ownership first")
        if user_id != actor_id and not has_min_org_role(actor.role, OrganizationRole.ADMIN):
            raise ForbiddenError("Insufficient permissions to remove members")

        db.delete(target)
        db.query(models.User).filter(
            models.User.id == user_id,
            models.User.current_organization_id == organization_id,
        ).update({models.User.current_organization_id: None}, synchronize_session="fetch")

    logger.info(f"Removed user {user_id} from organization {organization_id} (by {actor_id})")


def transfer_ownership(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    new_owner_id: UUID,
) -> models.OrganizationMember:
    """
    Hand OWNER to another member; the previous owner becomes ADMIN.

    Both role changes commit together or not at all.

    Raises:
        ForbiddenError: If the actor is not the current owner
        BadRequestError: If the target is the actor or not a member
        QuotaExceededError: If the target already owns the maximum number of organizations
    """
    if new_owner_id == actor_id:
        raise BadRequestError("You already own this organization")

    cap = get_settings().max_owned_organizations
    with atomic(db):
        current = _require_owner(db, organization_id, actor_id, lock=True)
        _get_user(db, new_owner_id, lock=True)
        target = get_membership(db, organization_id, new_owner_id, lock=True)
        if not target:
            raise BadRequestError("New owner must be a member of this organization")
        if _count_owned(db, new_owner_id) >= cap:
            raise QuotaExceededError(f"The new owner already owns {cap} organizations")

        current.role = OrganizationRole.ADMIN
        # Demote first; a second OWNER row must never be visible
        db.flush()
        target.role = OrganizationRole.OWNER

    db.refresh(target)
    logger.info(f"Transferred ownership of organization {organization_id} from {actor_id} to {new_owner_id}")
    return target


# ============================================================================
# Invitations
# ============================================================================

def create_invitation(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    email: str,
    role: OrganizationRole = OrganizationRole.MEMBER,
    mailer: Optional[MailSender] = None,
    schedule: Optional[Callable[..., Any]] = None,
) -> models.OrganizationInvitation:
    """
    Invite an email address to join.

    Same gate as add_member. The invitation email is sent after commit and a
    delivery failure does not undo the invitation.
    Pass ``schedule`` (e.g. ``BackgroundTasks.add_task``) to send it after
    the response instead of inline.

    Raises:
        BadRequestError: If role is OWNER
        ConflictError: If the email already belongs to a member or has a pending invitation
    """
    if role == OrganizationRole.OWNER:
        raise BadRequestError("Cannot invite a member as OWNER")

    now = utcnow()
    with atomic(db):
        sender = _require_invite_permission(db, organization_id, actor_id)
        organization = _get_organization(db, organization_id)

        already_member = (
            db.query(models.OrganizationMember.id)
            .join(models.User, models.User.id == models.OrganizationMember.user_id)
            .filter(
                models.OrganizationMember.organization_id == organization_id,
                models.User.email == email,
            )
            .first()
        )
        if already_member:
            raise ConflictError("User is already a member of this organization")

        pending = (
            db.query(models.OrganizationInvitation)
            .filter(
                models.OrganizationInvitation.organization_id == organization_id,
                models.OrganizationInvitation.email == email,
                models.OrganizationInvitation.status == InvitationStatus.PENDING,
            )
            .with_for_update()
            .all()
        )
        for stale in pending:
            if stale.expires_at < now:
                stale.status = InvitationStatus.EXPIRED
            else:
                raise ConflictError("An invitation has already been sent to this email")

        invitation = models.OrganizationInvitation(
            organization_id=organization_id,
            email=email,
            role=role,
            token=secrets.token_urlsafe(32),
            status=InvitationStatus.PENDING,
            sender_id=sender.user_id,
            expires_at=now + timedelta(days=get_settings().invitation_ttl_days),
        )
        db.add(invitation)

    db.refresh(invitation)
    logger.info(f"Invited {email} to organization {organization_id} as {role.value}")

    subject, html = organization_invitation_email(
        organization.name, sender.user.full_name or sender.user.email, role.value, invitation.token
    )
    queue_mail(email, subject, html, mailer=mailer, schedule=schedule)
    return invitation


def get_invitations(
    db: Session,
    actor_id: UUID,
    organization_id: UUID,
    status: Optional[InvitationStatus] = InvitationStatus.PENDING,
) -> list[models.OrganizationInvitation]:
    """List invitations, newest first. Requires MANAGER or above."""
    _require_role(db, organization_id, actor_id, OrganizationRole.MANAGER)
    query = db.query(models.OrganizationInvitation).filter(
        models.OrganizationInvitation.organization_id == organization_id
    )
    if status is not None:
        query = query.filter(models.OrganizationInvitation.status == status)
    return query.order_by(models.OrganizationInvitation.created_at.desc()).all()


def cancel_invitation(db: Session, actor_id: UUID, organization_id: UUID, invitation_id: UUID) -> None:
    """Withdraw an invitation. Requires ADMIN or above."""
    with atomic(db):
        _require_role(db, organization_id, actor_id, OrganizationRole.ADMIN, lock=True)
        invitation = (
            db.query(models.OrganizationInvitation)
            .filter(
                models.OrganizationInvitation.id == invitation_id,
                models.OrganizationInvitation.organization_id == organization_id,
            )
            .first()
        )
        if not invitation:
            raise NotFoundError("Invitation not found")
        db.delete(invitation)

    logger.info(f"Cancelled invitation {invitation_id} in organization {organization_id}")


def get_invitation_by_token(db: Session, token: str) -> models.OrganizationInvitation:
    """
    Look up a PENDING invitation.

    A PENDING invitation past its expiry is marked EXPIRED (and committed)
    before the lookup fails.

    Raises:
        NotFoundError: If no invitation has this token
        BadRequestError: If the invitation is no longer pending or has expired
    """
    invitation = (
        db.query(models.OrganizationInvitation)
        .filter(models.OrganizationInvitation.token == token)
        .first()
    )
    if not invitation:
        raise NotFoundError("Invitation not found")
    if invitation.status != InvitationStatus.PENDING:
        raise BadRequestError(f"Invitation has already been {invitation.status.value.lower()}")
    if invitation.expires_at < utcnow():
        with atomic(db):
            invitation.status = InvitationStatus.EXPIRED
        logger.info(f"Invitation {invitation.id} expired on read")
        raise BadRequestError("Invitation has expired")
    return invitation


def _check_invitee(user: models.User, invitation) -> None:
    if user.email != invitation.email:
        logger.warning(f"User {user.id} tried to use invitation {invitation.id} addressed to another email")
        raise ForbiddenError("This invitation was sent to a different email address")


def accept_invitation(db: Session, actor_id: UUID, token: str) -> models.OrganizationMember:
    """
    Accept an invitation addressed to the acting user's email.

    Membership creation, the ACCEPTED status and the current-organization
    switch commit together.

    Raises:
        ForbiddenError: If the actor's email does not match
        ConflictError: If the actor is already a member (the invitation is still marked ACCEPTED)
    """
    invitation = get_invitation_by_token(db, token)
    user = _get_user(db, actor_id)
    _check_invitee(user, invitation)

    if get_membership(db, invitation.organization_id, actor_id):
        with atomic(db):
            invitation.status = InvitationStatus.ACCEPTED
        raise ConflictError("You are already a member of this organization")

    try:
        with atomic(db):
            locked = (
                db.query(models.OrganizationInvitation)
                .filter(models.OrganizationInvitation.id == invitation.id)
                .with_for_update()
                .one()
            )
            if locked.status != InvitationStatus.PENDING:
                raise BadRequestError(f"Invitation has already been {locked.status.value.lower()}")
            member = models.OrganizationMember(
                organization_id=locked.organization_id,
                user_id=actor_id,
                role=locked.role,
            )
            db.add(member)
            locked.status = InvitationStatus.ACCEPTED
            user.current_organization_id = locked.organization_id
    except IntegrityError:
        raise ConflictError("You are already a member of this organization") from None

    db.refresh(member)
    logger.info(f"User {actor_id} joined organization {member.organization_id} as {member.role.value}")
    return member


def reject_invitation(db: Session, actor_id: UUID, token: str) -> models.OrganizationInvitation:
    invitation = get_invitation_by_token(db, token)
    _check_invitee(_get_user(db, actor_id), invitation)
    with atomic(db):
        invitation.status = InvitationStatus.REJECTED
    logger.info(f"User {actor_id} rejected invitation {invitation.id}")
    return invitation


# ============================================================================
# Read models
# ============================================================================

def get_dashboard_stats(db: Session, actor_id: UUID, organization_id: UUID) -> dict:
    """
    Aggregate counts for the organization dashboard. Any member may read it.

    Returns:
        Dict with project_count, member_count, total_tasks, completed_tasks,
        tasks_by_status, recent_activity (20) and recent_projects (5)
    """
    _require_member(db, organization_id, actor_id)

    project_ids = select(models.Project.id).where(models.Project.organization_id == organization_id)
    project_count = db.query(func.count()).select_from(project_ids.subquery()).scalar()
    member_count = (
        db.query(func.count(models.OrganizationMember.id))
        .filter(models.OrganizationMember.organization_id == organization_id)
        .scalar()
    )
    status_rows = (
        db.query(models.Task.status, func.count(models.Task.id))
        .filter(models.Task.project_id.in_(project_ids))
        .group_by(models.Task.status)
        .all()
    )
    tasks_by_status = {status.value: count for status, count in status_rows}
    recent_activity = (
        db.query(models.Activity)
        .options(joinedload(models.Activity.user))
        .filter(models.Activity.project_id.in_(project_ids))
        .order_by(models.Activity.created_at.desc())
        .limit(20)
        .all()
    )
    recent_projects = (
        db.query(models.Project)
        .filter(models.Project.organization_id == organization_id)
        .order_by(models.Project.updated_at.desc())
        .limit(5)
        .all()
    )
    return {
        "project_count": project_count,
        "member_count": member_count,
        "total_tasks": sum(tasks_by_status.values()),
        "completed_tasks": tasks_by_status.get(models.TaskStatus.DONE.value, 0),
        "tasks_by_status": tasks_by_status,
        "recent_activity": recent_activity,
        "recent_projects": recent_projects,
    }


def get_projects(db: Session, actor_id: UUID, organization_id: UUID) -> list[models.Project]:
    """All projects of the organization, newest first. Any member may read them."""
    _require_member(db, organization_id, actor_id)
    return (
        db.query(models.Project)
        .filter(models.Project.organization_id == organization_id)
        .order_by(models.Project.created_at.desc())
        .all()
    )


def user_needs_organization(db: Session, user_id: UUID) -> bool:
    """True when the user belongs to no organization at all."""
    return (
        db.query(models.OrganizationMember.id)
        .filter(models.OrganizationMember.user_id == user_id)
        .first()
    ) is None


def switch_organization(db: Session, actor_id: UUID, organization_id: UUID) -> models.Organization:
    """Point the actor's current organization at one they belong to."""
    with atomic(db):
        _require_member(db, organization_id, actor_id)
        user = _get_user(db, actor_id)
        user.current_organization_id = organization_id

    logger.debug(f"User {actor_id} switched to organization {organization_id}")
    return _get_organization(db, organization_id)
