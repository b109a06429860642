"""Tests for the project service: board scaffolding, member gates, invitations and columns."""
from datetime import timedelta
from uuid import uuid4

import pytest

from taskboard_core import models, projects, tasks
from taskboard_core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from taskboard_core.models import InvitationStatus, OrganizationRole, ProjectRole, TaskStatus, utcnow


class TestCreateProject:
    """Test project creation and its default board."""

    def test_default_board(self, db, owner, project):
        assert project.key == "WEB"
        assert project.owner_id == owner.id

        board = projects.get_board(db, project.id)
        assert board.name == "Main Board"
        columns = projects.get_columns(db, owner.id, project.id)
        assert [(c.name, c.status, c.order) for c in columns] == [
            ("Backlog", TaskStatus.BACKLOG, 0),
            ("To Do", TaskStatus.TODO, 1),
            ("In Progress", TaskStatus.IN_PROGRESS, 2),
            ("In Review", TaskStatus.IN_REVIEW, 3),
            ("Done", TaskStatus.DONE, 4),
        ]
        assert sorted(label.name for label in project.labels) == ["Bug", "Documentation", "Enhancement", "Feature"]

    def test_creator_is_admin_member(self, db, owner, project):
        member = projects.get_member(db, project.id, owner.id)
        assert member.role == ProjectRole.ADMIN

    def test_key_is_unique_case_insensitively(self, db, owner, organization, project):
        with pytest.raises(ConflictError):
            projects.create(db, owner.id, organization.id, "Web", "Another Website")

    def test_guest_cannot_create(self, db, organization, make_user, add_org_member):
        guest = make_user("guest")
        add_org_member(guest, OrganizationRole.GUEST)
        with pytest.raises(ForbiddenError):
            projects.create(db, guest.id, organization.id, "GST", "Guest Project")

    def test_non_member_cannot_create(self, db, organization, make_user):
        stranger = make_user("stranger")
        with pytest.raises(ForbiddenError):
            projects.create(db, stranger.id, organization.id, "STR", "Stranger Project")
        assert db.query(models.Project).count() == 0

    def test_org_member_can_create(self, db, organization, make_user, add_org_member):
        member = make_user("member")
        add_org_member(member)
        project = projects.create(db, member.id, organization.id, "mem", "Member Project")
        assert project.owner_id == member.id


class TestProjectAccess:
    """Test reads and owner/admin gates."""

    def test_find_all_lists_owned_and_member_projects(self, db, owner, organization, project, make_user, add_project_member):
        member = make_user("member")
        add_project_member(member)
        projects.create(db, owner.id, organization.id, "OPS", "Operations")

        items, total = projects.find_all(db, member.id)
        assert total == 1
        assert [p.id for p in items] == [project.id]

        items, total = projects.find_all(db, owner.id, page=1, limit=1)
        assert total == 2
        assert len(items) == 1

    def test_find_by_id_requires_access(self, db, project, make_user):
        stranger = make_user("stranger")
        with pytest.raises(ForbiddenError):
            projects.find_by_id(db, stranger.id, project.id)
        with pytest.raises(NotFoundError):
            projects.find_by_id(db, stranger.id, uuid4())

    def test_update_requires_admin(self, db, owner, project, make_user, add_project_member, publisher):
        manager = make_user("manager")
        add_project_member(manager, ProjectRole.MANAGER)
        with pytest.raises(ForbiddenError):
            projects.update(db, manager.id, project.id, {"name": "Renamed"})

        updated = projects.update(db, owner.id, project.id, {"name": "Renamed"}, publisher=publisher)
        assert updated.name == "Renamed"
        [(room, payload)] = publisher.named("project:updated")
        assert room == f"project:{project.id}"
        assert payload["name"] == "Renamed"

    def test_delete_is_owner_only(self, db, owner, project, make_user, add_project_member):
        admin = make_user("admin")
        add_project_member(admin, ProjectRole.ADMIN)
        task = tasks.create(db, owner.id, project.id, "Doomed")
        tasks.delete(db, owner.id, task.id)

        with pytest.raises(ForbiddenError):
            projects.delete(db, admin.id, project.id)

        project_id = project.id
        projects.delete(db, owner.id, project_id)
        assert db.query(models.Project).filter(models.Project.id == project_id).first() is None
        assert db.query(models.Task).count() == 0
        assert db.query(models.Activity).filter(models.Activity.project_id == project_id).count() == 0

    def test_stats(self, db, owner, project):
        tasks.create(db, owner.id, project.id, "One", priority=models.TaskPriority.HIGH)
        tasks.create(db, owner.id, project.id, "Two", status=TaskStatus.IN_PROGRESS)

        stats = projects.get_stats(db, owner.id, project.id)
        assert stats["total_tasks"] == 2
        assert stats["tasks_by_status"] == {"TODO": 1, "IN_PROGRESS": 1}
        assert stats["tasks_by_priority"] == {"HIGH": 1, "MEDIUM": 1}
        assert len(stats["recent_activity"]) == 2


class TestProjectMembers:
    """Test adding, removing and re-ranking project members."""

    def test_add_registered_user(self, db, owner, project, make_user, mailer, publisher):
        alice = make_user("alice")
        kind, member = projects.add_member(
            db, owner.id, project.id, alice.email, ProjectRole.MANAGER, mailer=mailer, publisher=publisher
        )

        assert kind == "member"
        assert member.role == ProjectRole.MANAGER
        notification = db.query(models.Notification).filter(models.Notification.user_id == alice.id).one()
        assert notification.type == models.NotificationType.PROJECT_MEMBER_ADDED
        assert publisher.named("project:member_added")[0][0] == f"project:{project.id}"
        assert publisher.named("notification")[0][0] == f"user:{alice.id}"
        assert mailer.subjects_for(alice.email) == ["Added to project: Website"]

    def test_unknown_email_gets_invitation(self, db, owner, project, mailer):
        kind, invitation = projects.add_member(db, owner.id, project.id, "new@example.com", mailer=mailer)

        assert kind == "invitation"
        assert invitation.status == InvitationStatus.PENDING
        assert invitation.inviter_id == owner.id
        assert mailer.subjects_for("new@example.com") == ["You've been invited to join Website"]
        with pytest.raises(ConflictError):
            projects.add_member(db, owner.id, project.id, "new@example.com", mailer=mailer)

    def test_mail_is_queued_when_scheduled(self, db, owner, project, make_user, mailer):
        alice = make_user("alice")
        queued = []

        def schedule(func, *args, **kwargs):
            queued.append((func, args, kwargs))

        projects.add_member(db, owner.id, project.id, alice.email, mailer=mailer, schedule=schedule)
        projects.add_member(db, owner.id, project.id, "new@example.com", mailer=mailer, schedule=schedule)

        assert mailer.sent == []
        for func, args, kwargs in queued:
            func(*args, **kwargs)
        assert mailer.subjects_for(alice.email) == ["Added to project: Website"]
        assert mailer.subjects_for("new@example.com") == ["You've been invited to join Website"]

    def test_existing_member_and_owner_conflict(self, db, owner, project, make_user, add_project_member):
        alice = make_user("alice")
        add_project_member(alice)
        with pytest.raises(ConflictError):
            projects.add_member(db, owner.id, project.id, alice.email)
        with pytest.raises(ConflictError):
            projects.add_member(db, owner.id, project.id, owner.email)

    def test_add_requires_admin(self, db, project, make_user, add_project_member):
        manager = make_user("manager")
        add_project_member(manager, ProjectRole.MANAGER)
        with pytest.raises(ForbiddenError):
            projects.add_member(db, manager.id, project.id, "x@example.com")

    def test_owner_cannot_be_removed(self, db, owner, project, make_user, add_project_member):
        admin = make_user("admin")
        add_project_member(admin, ProjectRole.ADMIN)
        with pytest.raises(BadRequestError):
            projects.remove_member(db, admin.id, project.id, owner.id)
        with pytest.raises(BadRequestError):
            projects.remove_member(db, owner.id, project.id, owner.id)

    def test_remove_and_leave(self, db, owner, project, make_user, add_project_member, publisher):
        alice = make_user("alice")
        bob = make_user("bob")
        add_project_member(alice)
        add_project_member(bob)

        with pytest.raises(ForbiddenError):
            projects.remove_member(db, alice.id, project.id, bob.id)

        projects.remove_member(db, alice.id, project.id, alice.id, publisher=publisher)
        projects.remove_member(db, owner.id, project.id, bob.id, publisher=publisher)
        assert projects.get_member(db, project.id, alice.id) is None
        assert projects.get_member(db, project.id, bob.id) is None
        assert [p["userId"] for _, p in publisher.named("project:member_removed")] == [str(alice.id), str(bob.id)]

    def test_role_change_is_owner_only(self, db, owner, project, make_user, add_project_member):
        admin = make_user("admin")
        alice = make_user("alice")
        add_project_member(admin, ProjectRole.ADMIN)
        add_project_member(alice)

        with pytest.raises(ForbiddenError):
            projects.update_member_role(db, admin.id, project.id, alice.id, ProjectRole.MANAGER)
        with pytest.raises(BadRequestError):
            projects.update_member_role(db, owner.id, project.id, owner.id, ProjectRole.GUEST)

        changed = projects.update_member_role(db, owner.id, project.id, alice.id, ProjectRole.MANAGER)
        assert changed.role == ProjectRole.MANAGER


class TestProjectInvitations:
    """Test accepting project invitations by token."""

    def _invite(self, db, owner, project, email, mailer):
        kind, invitation = projects.add_member(db, owner.id, project.id, email, ProjectRole.MANAGER, mailer=mailer)
        assert kind == "invitation"
        return invitation

    def test_accept_requires_matching_email(self, db, owner, project, make_user, mailer, publisher):
        invitation = self._invite(db, owner, project, "dana@example.com", mailer)
        dana = make_user("dana")
        eve = make_user("eve")

        with pytest.raises(ForbiddenError):
            projects.accept_invitation(db, eve.id, invitation.token)

        member = projects.accept_invitation(db, dana.id, invitation.token, publisher=publisher)
        assert member.role == ProjectRole.MANAGER
        db.refresh(invitation)
        assert invitation.status == InvitationStatus.ACCEPTED
        assert publisher.named("project:member_added")

    def test_expired_invitation(self, db, owner, project, make_user, mailer):
        invitation = self._invite(db, owner, project, "dana@example.com", mailer)
        dana = make_user("dana")
        invitation.expires_at = utcnow() - timedelta(hours=1)
        db.commit()

        with pytest.raises(BadRequestError):
            projects.accept_invitation(db, dana.id, invitation.token)
        db.refresh(invitation)
        assert invitation.status == InvitationStatus.EXPIRED

    def test_reject_and_cancel(self, db, owner, project, make_user, mailer):
        first = self._invite(db, owner, project, "dana@example.com", mailer)
        second = self._invite(db, owner, project, "fred@example.com", mailer)
        dana = make_user("dana")

        assert projects.reject_invitation(db, dana.id, first.token).status == InvitationStatus.REJECTED
        projects.cancel_invitation(db, owner.id, project.id, second.id)
        assert projects.get_invitations(db, owner.id, project.id) == []


class TestColumns:
    """Test board column management."""

    def test_create_column_goes_last(self, db, owner, project):
        column = projects.create_column(db, owner.id, project.id, "Blocked", TaskStatus.IN_PROGRESS)
        assert column.order == 5
        assert column.color == "#3b82f6"
        assert projects.get_columns(db, owner.id, project.id)[-1].id == column.id

    def test_explicit_order_must_be_free(self, db, owner, project):
        with pytest.raises(BadRequestError):
            projects.create_column(db, owner.id, project.id, "Clash", order=2)
        column = projects.create_column(db, owner.id, project.id, "Far", order=10)
        assert column.order == 10

    def test_member_cannot_manage_columns(self, db, project, make_user, add_project_member):
        member = make_user("member")
        add_project_member(member)
        with pytest.raises(ForbiddenError):
            projects.create_column(db, member.id, project.id, "Nope")

    def test_update_column(self, db, owner, project):
        column = projects.get_columns(db, owner.id, project.id)[0]
        updated = projects.update_column(db, owner.id, project.id, column.id, {"name": "Icebox", "wip_limit": 3})
        assert (updated.name, updated.wip_limit) == ("Icebox", 3)
        with pytest.raises(BadRequestError):
            projects.update_column(db, owner.id, project.id, column.id, {"order": 9})

    def test_delete_column_with_tasks(self, db, owner, project):
        todo = projects.get_columns(db, owner.id, project.id)[1]
        task = tasks.create(db, owner.id, project.id, "Blocker")
        assert task.column_id == todo.id

        with pytest.raises(BadRequestError):
            projects.delete_column(db, owner.id, project.id, todo.id)

        todo_id = todo.id
        done = next(c for c in projects.get_columns(db, owner.id, project.id) if c.name == "Done")
        tasks.move_task(db, owner.id, task.id, done.id)
        projects.delete_column(db, owner.id, project.id, todo_id)

        remaining = projects.get_columns(db, owner.id, project.id)
        assert todo_id not in [c.id for c in remaining]
        db.refresh(task)
        assert task.column_id == done.id

    def test_reorder(self, db, owner, project):
        backlog, todo = projects.get_columns(db, owner.id, project.id)[:2]
        columns = projects.reorder_columns(db, owner.id, project.id, [(backlog.id, 1), (todo.id, 0)])
        assert [c.name for c in columns][:2] == ["To Do", "Backlog"]

    def test_reorder_rejects_duplicates_and_foreign_columns(self, db, owner, project):
        backlog = projects.get_columns(db, owner.id, project.id)[0]
        with pytest.raises(BadRequestError):
            projects.reorder_columns(db, owner.id, project.id, [(backlog.id, 3)])
        with pytest.raises(BadRequestError):
            projects.reorder_columns(db, owner.id, project.id, [(uuid4(), 7)])

        orders = [c.order for c in projects.get_columns(db, owner.id, project.id)]
        assert orders == [0, 1, 2, 3, 4]
