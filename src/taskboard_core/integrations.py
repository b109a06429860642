"""Outbound collaborators: mail delivery and the real-time event transport.

Both are best-effort. The core calls them after its transaction commits and
never lets their failures reach the caller.
"""
import logging
import smtplib
import threading
from email.message import EmailMessage
from functools import lru_cache
from html import escape
from typing import Any, Optional

from .config import get_settings

logger = logging.getLogger("taskboard-core.integrations")


# ============================================================================
# Mail
# ============================================================================

class MailSender:
    """Interface for outbound email: ``send(to, subject, html)``."""

    def send(self, to: str, subject: str, html: str) -> None:
        raise NotImplementedError


class LoggingMailSender(MailSender):
    """Mail sender used when no SMTP relay is configured."""

    def send(self, to: str, subject: str, html: str) -> None:
        logger.info(f"Email to {to}: {subject}")


class SmtpMailSender(MailSender):
    """Deliver mail through an SMTP relay (STARTTLS, or SSL on port 465)."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        if self.port == 465:
            client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with client:
            if self.port != 465:
                client.starttls()
            if self.user and self.password:
                client.login(self.user, self.password)
            client.send_message(message)
        logger.debug(f"Sent email '{subject}' to {to}")


@lru_cache()
def get_mail_sender() -> MailSender:
    """Return the configured mail sender (SMTP if a host is set)."""
    settings = get_settings()
    if not settings.is_smtp_configured:
        return LoggingMailSender()
    return SmtpMailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_from,
        user=settings.smtp_user,
        password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
    )


def _layout(title: str, body: str, link: Optional[str] = None, link_text: str = "Open") -> str:
    button = f'<p><a href="{escape(link)}">{escape(link_text)}</a></p>' if link else ""
    return (
        "<!DOCTYPE html><html><body>"
        f"<h1>{escape(title)}</h1>{body}{button}"
        "</body></html>"
    )


def organization_invitation_email(
    organization_name: str, sender_name: str, role: str, token: str
) -> tuple[str, str]:
    """Build (subject, html) for an organization invitation."""
    settings = get_settings()
    url = f"{settings.client_url}/invitations/organization/{token}"
    body = (
        f"<p><strong>{escape(sender_name)}</strong> invited you to join "
        f"<strong>{escape(organization_name)}</strong> as {escape(role)}.</p>"
        f"<p>The invitation expires in {settings.invitation_ttl_days} days.</p>"
    )
    return (
        f"You've been invited to join {organization_name}",
        _layout("Organization Invitation", body, url, "Accept Invitation"),
    )


def project_invitation_email(
    project_name: str, sender_name: str, role: str, token: str
) -> tuple[str, str]:
    """Build (subject, html) for a project invitation."""
    url = f"{get_settings().client_url}/invite/{token}"
    body = (
        f"<p><strong>{escape(sender_name)}</strong> invited you to join the project "
        f"<strong>{escape(project_name)}</strong> as {escape(role)}.</p>"
    )
    return (
        f"You've been invited to join {project_name}",
        _layout("Project Invitation", body, url, "Accept Invitation"),
    )


def project_member_added_email(member_name: str, project_name: str, project_id) -> tuple[str, str]:
    url = f"{get_settings().client_url}/projects/{project_id}"
    body = f"<p>Hi {escape(member_name)}, you were added to <strong>{escape(project_name)}</strong>.</p>"
    return f"Added to project: {project_name}", _layout("New Project", body, url, "View Project")


def task_reminder_email(member_name: str, task_title: str, project_name: str, due_date) -> tuple[str, str]:
    body = (
        f"<p>Hi {escape(member_name)}, the task <strong>{escape(task_title)}</strong> in "
        f"{escape(project_name)} is due on {due_date:%Y-%m-%d}.</p>"
    )
    return f"Reminder: {task_title} is due tomorrow", _layout("Task Reminder", body)


def daily_digest_email(member_name: str, due_today: list, overdue: list) -> tuple[str, str]:
    def _items(tasks):
        return "".join(f"<li>{escape(t.title)} ({escape(t.project.name)})</li>" for t in tasks)

    body = f"<p>Hi {escape(member_name)},</p>"
    if due_today:
        body += f"<h2>Due today</h2><ul>{_items(due_today)}</ul>"
    if overdue:
        body += f"<h2>Overdue</h2><ul>{_items(overdue)}</ul>"
    return "Your daily task digest", _layout("Daily Digest", body)


# ============================================================================
# Real-time events
# ============================================================================

class EventPublisher:
    """
    Interface for the room-based push transport.

    Rooms are keyed ``project:{id}``, ``organization:{id}``, ``chat:{id}`` and
    ``user:{id}``.
    """

    def emit(self, room: str, event: str, payload: Any) -> None:
        raise NotImplementedError


class NullPublisher(EventPublisher):
    """Drops every event; used when no transport is wired in."""

    def emit(self, room: str, event: str, payload: Any) -> None:
        logger.debug(f"Dropped event {event} for {room}")


class InMemoryPublisher(EventPublisher):
    """Keeps emitted events in a list, for local runs and tests."""

    def __init__(self):
        self.events: list[tuple[str, str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, room: str, event: str, payload: Any) -> None:
        with self._lock:
            self.events.append((room, event, payload))

    def named(self, event: str) -> list[tuple[str, Any]]:
        """Return (room, payload) pairs for one event name."""
        return [(room, payload) for room, name, payload in self.events if name == event]


@lru_cache()
def get_publisher() -> EventPublisher:
    """Return the process-wide event publisher."""
    return NullPublisher()


def project_room(project_id) -> str:
    return f"project:{project_id}"


def organization_room(organization_id) -> str:
    return f"organization:{organization_id}"


def user_room(user_id) -> str:
    return f"user:{user_id}"
