"""Activity log and notification emission.

Activity and Notification rows are added to the caller's session and commit
together with the mutation that produced them. Push events and emails are
sent only after that commit and are best-effort: a failure is logged and
swallowed, never rolled back into the primary operation.
"""
import logging
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .integrations import EventPublisher, MailSender, get_mail_sender, get_publisher, user_room

logger = logging.getLogger("taskboard-core.activity")

# (room, event name, payload)
Event = tuple[str, str, Any]


def record_activity(
    db: Session,
    activity_type: models.ActivityType,
    description: str,
    user_id: Optional[UUID],
    task_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
    meta: Optional[dict] = None,
) -> models.Activity:
    """
    Append an activity entry to the current unit of work.

    Args:
        db: Database session (not committed here)
        activity_type: Lifecycle event type
        description: Human-readable description, e.g. "moved task from To Do to Done"
        user_id: Acting user
        task_id: Task the entry belongs to, None for global entries
        project_id: Project the entry belongs to
        meta: Free-form key/value details

    Returns:
        The pending Activity row
    """
    activity = models.Activity(
        type=activity_type,
        description=description,
        user_id=user_id,
        task_id=task_id,
        project_id=project_id,
        meta=meta or {},
    )
    db.add(activity)
    return activity


def create_notification(
    db: Session,
    user_id: UUID,
    notification_type: models.NotificationType,
    title: str,
    message: str,
    meta: Optional[dict] = None,
) -> models.Notification:
    """Add a notification for ``user_id`` to the current unit of work."""
    notification = models.Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        meta=meta or {},
    )
    db.add(notification)
    return notification


def notification_event(notification: models.Notification) -> Event:
    """Build the push event delivering a committed notification to its recipient."""
    payload = {
        "id": str(notification.id),
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "metadata": notification.meta or {},
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }
    return (user_room(notification.user_id), "notification", payload)


def dispatch_events(events: Iterable[Event], publisher: Optional[EventPublisher] = None) -> None:
    """Publish events after commit. Delivery failures are logged, not raised."""
    publisher = publisher or get_publisher()
    for room, event, payload in events:
        try:
            publisher.emit(room, event, payload)
        except Exception:
            logger.warning(f"Failed to emit {event} to {room}", exc_info=True)


def send_mail_safely(
    to: str,
    subject: str,
    html: str,
    mailer: Optional[MailSender] = None,
) -> bool:
    """
    Send an email without letting delivery problems escape.

    Returns:
        True if the mail sender accepted the message, False otherwise
    """
    mailer = mailer or get_mail_sender()
    try:
        mailer.send(to, subject, html)
        return True
    except Exception:
        logger.warning(f"Failed to send email '{subject}' to {to}", exc_info=True)
        return False


def queue_mail(
    to: str,
    subject: str,
    html: str,
    mailer: Optional[MailSender] = None,
    schedule: Optional[Callable[..., Any]] = None,
) -> None:
    """
    Hand an email to ``schedule`` so it goes out after the caller returns.

    ``schedule`` has the ``BackgroundTasks.add_task`` signature. Without one
    the mail is sent inline, which is what batch jobs and scripts want.
    """
    if schedule is None:
        send_mail_safely(to, subject, html, mailer=mailer)
        return
    schedule(send_mail_safely, to, subject, html, mailer=mailer)
