"""Batch jobs for an external scheduler.

Each job is a plain function taking a session and an optional ``now`` and
returning how many rows or recipients it handled. Jobs keep no state between
runs and are safe to re-run: notification sweeps skip recipients that were
already notified about the same task.

Usage:
    python -m taskboard_core.jobs overdue
    python -m taskboard_core.jobs expire-invitations
"""
import argparse
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from . import models
from .activity import create_notification, dispatch_events, notification_event, send_mail_safely
from .database import SessionLocal, atomic
from .integrations import EventPublisher, MailSender, daily_digest_email, task_reminder_email
from .models import CLOSED_TASK_STATUSES, InvitationStatus, NotificationType, utcnow

logger = logging.getLogger("taskboard-core.jobs")


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _already_notified(db: Session, notification_type: NotificationType, user_ids) -> set[tuple]:
    """(user id, task id) pairs that already received this notification type."""
    if not user_ids:
        return set()
    rows = (
        db.query(models.Notification.user_id, models.Notification.meta)
        .filter(
            models.Notification.type == notification_type,
            models.Notification.user_id.in_(user_ids),
        )
        .all()
    )
    return {(user_id, (meta or {}).get("taskId")) for user_id, meta in rows}


def _open_tasks(db: Session):
    return (
        db.query(models.Task)
        .options(selectinload(models.Task.assignees), selectinload(models.Task.project))
        .filter(models.Task.status.notin_(CLOSED_TASK_STATUSES))
    )


def sweep_overdue_tasks(
    db: Session,
    now: Optional[datetime] = None,
    publisher: Optional[EventPublisher] = None,
) -> int:
    """
    Notify assignees of open tasks whose due date has passed.

    Returns:
        Number of notifications created
    """
    now = now or utcnow()
    tasks = _open_tasks(db).filter(models.Task.due_date < now).all()
    user_ids = {user.id for task in tasks for user in task.assignees}

    created = []
    with atomic(db):
        seen = _already_notified(db, NotificationType.TASK_OVERDUE, user_ids)
        for task in tasks:
            for user in task.assignees:
                if (user.id, str(task.id)) in seen:
                    continue
                created.append(create_notification(
                    db,
                    user.id,
                    NotificationType.TASK_OVERDUE,
                    "Task Overdue",
                    f'Task "{task.title}" in project "{task.project.name}" is overdue.',
                    {"taskId": str(task.id), "projectId": str(task.project_id)},
                ))

    dispatch_events([notification_event(n) for n in created], publisher)
    logger.info(f"Overdue sweep: {len(tasks)} overdue task(s), {len(created)} notification(s)")
    return len(created)


def remind_tasks_due_tomorrow(
    db: Session,
    now: Optional[datetime] = None,
    publisher: Optional[EventPublisher] = None,
    mailer: Optional[MailSender] = None,
) -> int:
    """
    Notify and email assignees of open tasks due tomorrow.

    Returns:
        Number of reminders created
    """
    now = now or utcnow()
    tomorrow = _start_of_day(now) + timedelta(days=1)
    tasks = (
        _open_tasks(db)
        .filter(models.Task.due_date >= tomorrow, models.Task.due_date < tomorrow + timedelta(days=1))
        .all()
    )
    user_ids = {user.id for task in tasks for user in task.assignees}

    reminders = []
    with atomic(db):
        seen = _already_notified(db, NotificationType.TASK_DUE_SOON, user_ids)
        for task in tasks:
            for user in task.assignees:
                if (user.id, str(task.id)) in seen:
                    continue
                notification = create_notification(
                    db,
                    user.id,
                    NotificationType.TASK_DUE_SOON,
                    "Task Due Tomorrow",
                    f'Task "{task.title}" in project "{task.project.name}" is due tomorrow.',
                    {"taskId": str(task.id), "projectId": str(task.project_id)},
                )
                reminders.append((notification, user, task))

    dispatch_events([notification_event(n) for n, _, _ in reminders], publisher)
    for _, user, task in reminders:
        subject, html = task_reminder_email(
            user.full_name or "User", task.title, task.project.name, task.due_date
        )
        send_mail_safely(user.email, subject, html, mailer=mailer)

    logger.info(f"Due-tomorrow reminders: {len(reminders)} sent for {len(tasks)} task(s)")
    return len(reminders)


def send_daily_digest(
    db: Session,
    now: Optional[datetime] = None,
    mailer: Optional[MailSender] = None,
) -> int:
    """
    Email every active user a digest of their open tasks due today or overdue.

    Users with nothing due are skipped.

    Returns:
        Number of digests sent
    """
    now = now or utcnow()
    today = _start_of_day(now)
    tomorrow = today + timedelta(days=1)

    sent = 0
    users = db.query(models.User).filter(models.User.is_active.is_(True)).all()
    for user in users:
        assigned = _open_tasks(db).filter(
            models.Task.assignees.any(models.User.id == user.id),
            models.Task.due_date < tomorrow,
        ).all()
        due_today = [t for t in assigned if t.due_date >= today]
        overdue = [t for t in assigned if t.due_date < today]
        if not due_today and not overdue:
            continue
        subject, html = daily_digest_email(user.full_name or user.email, due_today, overdue)
        if send_mail_safely(user.email, subject, html, mailer=mailer):
            sent += 1

    logger.info(f"Daily digest sent to {sent} of {len(users)} active user(s)")
    return sent


def expire_invitations(db: Session, now: Optional[datetime] = None) -> int:
    """
    Mark PENDING organization and project invitations past expiry as EXPIRED.

    Returns:
        Number of invitations expired
    """
    now = now or utcnow()
    count = 0
    with atomic(db):
        for model in (models.OrganizationInvitation, models.ProjectInvitation):
            count += (
                db.query(model)
                .filter(model.status == InvitationStatus.PENDING, model.expires_at < now)
                .update({model.status: InvitationStatus.EXPIRED}, synchronize_session=False)
            )

    logger.info(f"Expired {count} invitation(s)")
    return count


def cleanup_expired_tokens(db: Session, now: Optional[datetime] = None) -> int:
    """
    Delete refresh tokens past their expiry.

    Returns:
        Number of tokens deleted
    """
    now = now or utcnow()
    with atomic(db):
        count = (
            db.query(models.RefreshToken)
            .filter(models.RefreshToken.expires_at < now)
            .delete(synchronize_session=False)
        )

    logger.info(f"Cleaned up {count} expired refresh token(s)")
    return count


JOBS = {
    "overdue": sweep_overdue_tasks,
    "digest": send_daily_digest,
    "expire-invitations": expire_invitations,
    "cleanup-tokens": cleanup_expired_tokens,
    "remind-due-tomorrow": remind_tasks_due_tomorrow,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run one taskboard batch job")
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    db = SessionLocal()
    try:
        count = JOBS[args.job](db)
    except Exception:
        logger.error(f"Job {args.job} failed", exc_info=True)
        return 1
    finally:
        db.close()

    logger.info(f"Job {args.job} finished: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
