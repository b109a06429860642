"""Request-scoped dependencies: the authenticated user and outbound collaborators."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .. import models
from ..database import get_db
from ..errors import UnauthorizedError
from ..integrations import EventPublisher, MailSender, get_mail_sender, get_publisher

logger = logging.getLogger("taskboard-core.auth")


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the user authenticated by the upstream gateway.

    The gateway validates credentials and forwards the user id in the
    ``X-User-Id`` header.

    Raises:
        UnauthorizedError: If the header is missing or malformed, or the user is unknown or inactive
    """
    if not x_user_id:
        raise UnauthorizedError()
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user id") from None

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user or not user.is_active:
        logger.warning(f"Rejected request for unknown or inactive user {user_id}")
        raise UnauthorizedError("User not found or inactive")
    return user


def get_event_publisher() -> EventPublisher:
    return get_publisher()


def get_mailer() -> MailSender:
    return get_mail_sender()
