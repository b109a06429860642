"""Tests for the scheduled batch jobs."""
from datetime import datetime, timedelta

import pytest

from taskboard_core import jobs, models, organizations, projects, tasks
from taskboard_core.models import InvitationStatus, NotificationType, TaskStatus

NOW = datetime(2026, 3, 10, 9, 0)


@pytest.fixture
def alice(make_user, add_project_member):
    user = make_user("alice")
    add_project_member(user)
    return user


def _task(db, owner, project, title, due_date, assignees, status=TaskStatus.TODO):
    return tasks.create(
        db, owner.id, project.id, title,
        status=status, due_date=due_date, assignee_ids=[u.id for u in assignees],
    )


def _notifications(db, notification_type):
    return db.query(models.Notification).filter(models.Notification.type == notification_type).all()


class TestOverdueSweep:
    def test_notifies_assignees_once(self, db, owner, project, alice, publisher):
        late = _task(db, owner, project, "Late", NOW - timedelta(days=1), [alice])
        _task(db, owner, project, "Finished", NOW - timedelta(days=1), [alice], status=TaskStatus.DONE)
        _task(db, owner, project, "Nobody", NOW - timedelta(days=1), [])
        _task(db, owner, project, "Future", NOW + timedelta(days=5), [alice])

        assert jobs.sweep_overdue_tasks(db, now=NOW, publisher=publisher) == 1

        [notification] = _notifications(db, NotificationType.TASK_OVERDUE)
        assert notification.user_id == alice.id
        assert notification.meta["taskId"] == str(late.id)
        assert notification.message == 'Task "Late" in project "Website" is overdue.'
        assert publisher.named("notification")[0][0] == f"user:{alice.id}"

    def test_rerun_does_not_duplicate(self, db, owner, project, alice):
        _task(db, owner, project, "Late", NOW - timedelta(hours=2), [alice])

        assert jobs.sweep_overdue_tasks(db, now=NOW) == 1
        assert jobs.sweep_overdue_tasks(db, now=NOW) == 0
        assert len(_notifications(db, NotificationType.TASK_OVERDUE)) == 1

    def test_each_assignee_is_notified(self, db, owner, project, alice, make_user, add_project_member):
        bob = make_user("bob")
        add_project_member(bob)
        _task(db, owner, project, "Shared", NOW - timedelta(days=2), [alice, bob])

        assert jobs.sweep_overdue_tasks(db, now=NOW) == 2


class TestDueTomorrowReminder:
    def test_notifies_and_emails(self, db, owner, project, alice, publisher, mailer):
        due = _task(db, owner, project, "Prepare demo", NOW + timedelta(days=1), [alice])
        _task(db, owner, project, "Later", NOW + timedelta(days=3), [alice])
        _task(db, owner, project, "Today", NOW + timedelta(hours=3), [alice])

        assert jobs.remind_tasks_due_tomorrow(db, now=NOW, publisher=publisher, mailer=mailer) == 1

        [notification] = _notifications(db, NotificationType.TASK_DUE_SOON)
        assert notification.meta["taskId"] == str(due.id)
        assert mailer.subjects_for("alice@example.com") == ["Reminder: Prepare demo is due tomorrow"]

    def test_rerun_does_not_duplicate(self, db, owner, project, alice, mailer):
        _task(db, owner, project, "Prepare demo", NOW + timedelta(days=1), [alice])

        jobs.remind_tasks_due_tomorrow(db, now=NOW, mailer=mailer)
        assert jobs.remind_tasks_due_tomorrow(db, now=NOW, mailer=mailer) == 0
        assert len(mailer.sent) == 1


class TestDailyDigest:
    def test_only_users_with_due_work(self, db, owner, project, alice, make_user, add_project_member, mailer):
        bob = make_user("bob")
        add_project_member(bob)
        _task(db, owner, project, "Due today", NOW.replace(hour=17), [alice])
        _task(db, owner, project, "Overdue", NOW - timedelta(days=2), [alice])
        _task(db, owner, project, "Next week", NOW + timedelta(days=7), [bob])

        assert jobs.send_daily_digest(db, now=NOW, mailer=mailer) == 1

        [(to, subject, html)] = mailer.sent
        assert to == "alice@example.com"
        assert subject == "Your daily task digest"
        assert "Due today" in html
        assert "Overdue" in html

    def test_skips_inactive_and_closed(self, db, owner, project, alice, mailer):
        _task(db, owner, project, "Done already", NOW, [alice], status=TaskStatus.DONE)
        _task(db, owner, project, "Overdue", NOW - timedelta(days=1), [owner])
        owner.is_active = False
        db.commit()

        assert jobs.send_daily_digest(db, now=NOW, mailer=mailer) == 0
        assert mailer.sent == []


class TestExpireInvitations:
    def test_marks_past_expiry_as_expired(self, db, owner, organization, project, mailer):
        org_invitation = organizations.create_invitation(
            db, owner.id, organization.id, "newcomer@example.com", mailer=mailer
        )
        kind, project_invitation = projects.add_member(
            db, owner.id, project.id, "contractor@example.com", mailer=mailer
        )
        assert kind == "invitation"

        assert jobs.expire_invitations(db, now=models.utcnow() + timedelta(days=1)) == 0
        later = models.utcnow() + timedelta(days=30)
        assert jobs.expire_invitations(db, now=later) == 2
        assert jobs.expire_invitations(db, now=later) == 0

        db.refresh(org_invitation)
        db.refresh(project_invitation)
        assert org_invitation.status == InvitationStatus.EXPIRED
        assert project_invitation.status == InvitationStatus.EXPIRED


class TestCleanupTokens:
    def test_deletes_only_expired(self, db, owner):
        db.add_all([
            models.RefreshToken(user_id=owner.id, token="old", expires_at=NOW - timedelta(days=1)),
            models.RefreshToken(user_id=owner.id, token="fresh", expires_at=NOW + timedelta(days=1)),
        ])
        db.commit()

        assert jobs.cleanup_expired_tokens(db, now=NOW) == 1
        assert [t.token for t in db.query(models.RefreshToken).all()] == ["fresh"]


class TestMain:
    """Test the command line entry point."""

    @pytest.fixture(autouse=True)
    def use_test_database(self, monkeypatch, session_factory):
        monkeypatch.setattr(jobs, "SessionLocal", session_factory)

    def test_runs_named_job(self, db, owner):
        db.add(models.RefreshToken(user_id=owner.id, token="stale", expires_at=NOW))
        db.commit()

        assert jobs.main(["cleanup-tokens"]) == 0
        assert db.query(models.RefreshToken).count() == 0

    def test_failure_returns_nonzero(self, monkeypatch):
        def broken(db):
            raise RuntimeError("database unavailable")

        monkeypatch.setitem(jobs.JOBS, "overdue", broken)
        assert jobs.main(["overdue"]) == 1

    def test_unknown_job(self):
        with pytest.raises(SystemExit) as exc_info:
            jobs.main(["compact"])
        assert exc_info.value.code == 2
