"""Tests for the board/task state machine.

Key behaviors:
- Task numbers increase strictly per project and are never reused
- Moving a task always takes the destination column's status
- A plain update never couples column and status
- Every transition writes its activity in the same transaction
"""
from uuid import uuid4

import pytest

from taskboard_core import models, projects, tasks
from taskboard_core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from taskboard_core.models import ActivityType, NotificationType, ProjectRole, TaskPriority, TaskStatus


def _column(db, owner, project, name):
    return next(c for c in projects.get_columns(db, owner.id, project.id) if c.name == name)


def _activities(db, task_id):
    return (
        db.query(models.Activity)
        .filter(models.Activity.task_id == task_id)
        .order_by(models.Activity.created_at)
        .all()
    )


@pytest.fixture
def manager(make_user, add_project_member):
    user = make_user("manager")
    add_project_member(user, ProjectRole.MANAGER)
    return user


@pytest.fixture
def alice(make_user, add_project_member):
    user = make_user("alice")
    add_project_member(user, ProjectRole.MEMBER)
    return user


class TestCreateTask:
    """Test task creation, numbering and default placement."""

    def test_lands_in_first_column_for_status(self, db, owner, project, publisher):
        task = tasks.create(db, owner.id, project.id, "Write docs", publisher=publisher)

        assert task.status == TaskStatus.TODO
        assert task.column_id == _column(db, owner, project, "To Do").id
        assert task.order == 0
        assert task.creator_id == owner.id

        [activity] = _activities(db, task.id)
        assert activity.type == ActivityType.CREATED
        assert activity.description == "created the task"
        assert activity.project_id == project.id

        [(room, payload)] = publisher.named("task:created")
        assert room == f"project:{project.id}"
        assert payload["title"] == "Write docs"
        assert publisher.named("analytics:updated")[0][0] == f"organization:{project.organization_id}"

    def test_status_selects_column(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Someday", status=TaskStatus.BACKLOG)
        assert task.column_id == _column(db, owner, project, "Backlog").id

    def test_status_without_column_stays_off_board(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Dropped", status=TaskStatus.CANCELLED)
        assert task.column_id is None

    def test_explicit_column(self, db, owner, project):
        review = _column(db, owner, project, "In Review")
        task = tasks.create(db, owner.id, project.id, "Check", column_id=review.id)
        assert task.column_id == review.id
        assert task.status == TaskStatus.TODO

    def test_foreign_column(self, db, owner, project):
        with pytest.raises(NotFoundError):
            tasks.create(db, owner.id, project.id, "Lost", column_id=uuid4())

    def test_numbers_strictly_increase_across_deletes(self, db, owner, project):
        first = tasks.create(db, owner.id, project.id, "One")
        second = tasks.create(db, owner.id, project.id, "Two")
        third = tasks.create(db, owner.id, project.id, "Three")
        assert [first.task_number, second.task_number, third.task_number] == [1, 2, 3]

        tasks.delete(db, owner.id, third.id)
        fourth = tasks.create(db, owner.id, project.id, "Four")
        assert fourth.task_number == 4

    def test_numbers_are_per_project(self, db, owner, organization, project):
        other = projects.create(db, owner.id, organization.id, "OPS", "Operations")
        tasks.create(db, owner.id, project.id, "Web task")
        assert tasks.create(db, owner.id, other.id, "Ops task").task_number == 1

    def test_subtasks_are_one_level_deep(self, db, owner, project):
        parent = tasks.create(db, owner.id, project.id, "Epic-ish")
        child = tasks.create(db, owner.id, project.id, "Child", parent_id=parent.id)
        assert child.parent_id == parent.id

        with pytest.raises(BadRequestError):
            tasks.create(db, owner.id, project.id, "Grandchild", parent_id=child.id)

    def test_assignees_and_labels(self, db, owner, project, alice, make_user):
        bug = next(label for label in project.labels if label.name == "Bug")
        task = tasks.create(
            db, owner.id, project.id, "Fix login", assignee_ids=[alice.id], label_ids=[bug.id]
        )
        assert [u.id for u in task.assignees] == [alice.id]
        assert [label.name for label in task.labels] == ["Bug"]
        # Creating with assignees does not notify them
        assigned = db.query(models.Notification).filter(
            models.Notification.type == NotificationType.TASK_ASSIGNED
        )
        assert assigned.count() == 0

        outsider = make_user("outsider")
        with pytest.raises(BadRequestError):
            tasks.create(db, owner.id, project.id, "Nope", assignee_ids=[outsider.id])
        with pytest.raises(BadRequestError):
            tasks.create(db, owner.id, project.id, "Nope", label_ids=[uuid4()])

    def test_guest_cannot_create(self, db, project, make_user, add_project_member):
        guest = make_user("guest")
        add_project_member(guest, ProjectRole.GUEST)
        with pytest.raises(ForbiddenError):
            tasks.create(db, guest.id, project.id, "Sneaky")

    def test_failed_create_leaves_no_rows(self, db, owner, project):
        with pytest.raises(BadRequestError):
            tasks.create(db, owner.id, project.id, "Bad labels", label_ids=[uuid4()])
        assert db.query(models.Task).count() == 0
        assert db.query(models.Activity).count() == 0
        assert tasks.create(db, owner.id, project.id, "Good").task_number == 1


class TestReadTasks:
    """Test listing and filtering."""

    def test_find_all_filters(self, db, owner, project, alice):
        login = tasks.create(db, owner.id, project.id, "Fix login", priority=TaskPriority.HIGH, assignee_ids=[alice.id])
        docs = tasks.create(db, owner.id, project.id, "Docs", description="Write the login guide")
        tasks.create(db, owner.id, project.id, "Release", status=TaskStatus.DONE)
        tasks.create(db, owner.id, project.id, "Sub", parent_id=login.id)

        items, total = tasks.find_all(db, owner.id, project.id)
        assert total == 3

        items, _ = tasks.find_all(db, owner.id, project.id, status=TaskStatus.DONE)
        assert [t.title for t in items] == ["Release"]
        items, _ = tasks.find_all(db, owner.id, project.id, priority=TaskPriority.HIGH)
        assert [t.id for t in items] == [login.id]
        items, _ = tasks.find_all(db, owner.id, project.id, assignee_id=alice.id)
        assert [t.id for t in items] == [login.id]
        items, _ = tasks.find_all(db, owner.id, project.id, search="LOGIN")
        assert {t.id for t in items} == {login.id, docs.id}

    def test_search_treats_wildcards_literally(self, db, owner, project):
        tasks.create(db, owner.id, project.id, "fix axb parser")
        underscore = tasks.create(db, owner.id, project.id, "fix a_b parser")
        tasks.create(db, owner.id, project.id, "1000 rows")
        percent = tasks.create(db, owner.id, project.id, "100% done")

        items, _ = tasks.find_all(db, owner.id, project.id, search="a_b")
        assert [t.id for t in items] == [underscore.id]
        items, _ = tasks.find_all(db, owner.id, project.id, search="100%")
        assert [t.id for t in items] == [percent.id]

    def test_pagination(self, db, owner, project):
        for i in range(5):
            tasks.create(db, owner.id, project.id, f"Task {i}")
        items, total = tasks.find_all(db, owner.id, project.id, page=2, limit=2)
        assert total == 5
        assert len(items) == 2

    def test_find_by_column(self, db, owner, project):
        todo = _column(db, owner, project, "To Do")
        task = tasks.create(db, owner.id, project.id, "Here")
        tasks.create(db, owner.id, project.id, "Elsewhere", status=TaskStatus.DONE)
        assert [t.id for t in tasks.find_by_column(db, owner.id, todo.id)] == [task.id]

    def test_reads_require_access(self, db, owner, project, make_user):
        task = tasks.create(db, owner.id, project.id, "Private")
        stranger = make_user("stranger")
        with pytest.raises(ForbiddenError):
            tasks.find_by_id(db, stranger.id, task.id)
        with pytest.raises(ForbiddenError):
            tasks.find_all(db, stranger.id, project.id)
        with pytest.raises(NotFoundError):
            tasks.find_by_id(db, owner.id, uuid4())


class TestUpdateTask:
    """Test field updates and their activity entries."""

    def test_status_change(self, db, owner, project, alice, publisher):
        task = tasks.create(db, owner.id, project.id, "Build")
        todo_column = task.column_id

        updated = tasks.update(db, alice.id, task.id, {"status": TaskStatus.IN_PROGRESS}, publisher=publisher)

        assert updated.status == TaskStatus.IN_PROGRESS
        # update never moves the task between columns
        assert updated.column_id == todo_column
        activity = _activities(db, task.id)[-1]
        assert activity.type == ActivityType.STATUS_CHANGED
        assert activity.description == "updated status from TODO to IN_PROGRESS"
        assert activity.meta["status"] == {"from": "TODO", "to": "IN_PROGRESS"}
        assert publisher.named("task:updated")

    def test_priority_and_title_change(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Build")
        tasks.update(db, owner.id, task.id, {"priority": TaskPriority.HIGH, "title": "Build it"})

        activity = _activities(db, task.id)[-1]
        assert activity.type == ActivityType.UPDATED
        assert activity.description == "updated priority from MEDIUM to HIGH, title"

    def test_column_change_keeps_status(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Build")
        done = _column(db, owner, project, "Done")
        updated = tasks.update(db, owner.id, task.id, {"column_id": done.id, "order": 3})
        assert updated.column_id == done.id
        assert updated.status == TaskStatus.TODO
        assert updated.order == 3

    def test_untracked_change_writes_no_activity(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Build")
        tasks.update(db, owner.id, task.id, {"description": "details", "status": TaskStatus.TODO})
        assert len(_activities(db, task.id)) == 1

    def test_label_replacement(self, db, owner, project):
        labels = {label.name: label for label in project.labels}
        bug, feature = labels["Bug"], labels["Feature"]
        task = tasks.create(db, owner.id, project.id, "Build", label_ids=[bug.id])
        updated = tasks.update(db, owner.id, task.id, {"label_ids": [feature.id]})
        assert [label.id for label in updated.labels] == [feature.id]

    def test_rejects_unknown_fields_and_guests(self, db, owner, project, make_user, add_project_member):
        task = tasks.create(db, owner.id, project.id, "Build")
        with pytest.raises(BadRequestError):
            tasks.update(db, owner.id, task.id, {"task_number": 99})
        with pytest.raises(BadRequestError):
            tasks.update(db, owner.id, task.id, {"title": None, "order": None})
        db.refresh(task)
        assert (task.title, task.order) == ("Build", 0)

        guest = make_user("guest")
        add_project_member(guest, ProjectRole.GUEST)
        with pytest.raises(ForbiddenError):
            tasks.update(db, guest.id, task.id, {"title": "Mine now"})


class TestMoveTask:
    """Test that moves couple the column and the status."""

    def test_move_takes_column_status(self, db, owner, project, alice, publisher):
        """Default placement in To Do, then a move to Done sets DONE."""
        task = tasks.create(db, owner.id, project.id, "Ship")
        done = _column(db, owner, project, "Done")

        moved = tasks.move_task(db, alice.id, task.id, done.id, 2, publisher=publisher)

        assert moved.column_id == done.id
        assert moved.status == TaskStatus.DONE
        assert moved.order == 2
        activity = _activities(db, task.id)[-1]
        assert activity.type == ActivityType.MOVED
        assert activity.description == "moved task from To Do to Done"
        assert activity.meta["toStatus"] == "DONE"
        assert publisher.named("task:moved")[0][1]["status"] == "DONE"
        assert publisher.named("analytics:updated")

    def test_reorder_within_column_resets_status(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Ship")
        tasks.update(db, owner.id, task.id, {"status": TaskStatus.IN_REVIEW})

        moved = tasks.move_task(db, owner.id, task.id, task.column_id, 1)
        assert moved.status == TaskStatus.TODO

    def test_move_from_off_board(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Revived", status=TaskStatus.CANCELLED)
        backlog = _column(db, owner, project, "Backlog")
        tasks.move_task(db, owner.id, task.id, backlog.id)
        assert _activities(db, task.id)[-1].description == "moved task from Unknown to Backlog"

    def test_move_to_other_projects_column(self, db, owner, organization, project):
        other = projects.create(db, owner.id, organization.id, "OPS", "Operations")
        foreign = projects.get_columns(db, owner.id, other.id)[0]
        task = tasks.create(db, owner.id, project.id, "Stay")

        with pytest.raises(NotFoundError):
            tasks.move_task(db, owner.id, task.id, foreign.id)
        db.refresh(task)
        assert task.status == TaskStatus.TODO


class TestAssignment:
    """Test assigning and unassigning users."""

    def test_assign(self, db, owner, project, manager, alice, publisher):
        task = tasks.create(db, owner.id, project.id, "Review")

        assigned = tasks.assign_user(db, manager.id, task.id, alice.id, publisher=publisher)

        assert [u.id for u in assigned.assignees] == [alice.id]
        activity = _activities(db, task.id)[-1]
        assert activity.type == ActivityType.ASSIGNED
        assert activity.description == "assigned Alice Tester"
        notification = (
            db.query(models.Notification)
            .filter(
                models.Notification.user_id == alice.id,
                models.Notification.type == NotificationType.TASK_ASSIGNED,
            )
            .one()
        )
        assert notification.type == NotificationType.TASK_ASSIGNED
        assert notification.meta["taskId"] == str(task.id)
        [(room, payload)] = publisher.named("task:assigned")
        assert payload["assignee"]["id"] == str(alice.id)
        assert publisher.named("notification")[0][0] == f"user:{alice.id}"

    def test_double_assign_conflicts_without_side_effects(self, db, owner, project, alice):
        task = tasks.create(db, owner.id, project.id, "Review")
        tasks.assign_user(db, owner.id, task.id, alice.id)
        activities = len(_activities(db, task.id))
        notifications = db.query(models.Notification).count()

        with pytest.raises(ConflictError):
            tasks.assign_user(db, owner.id, task.id, alice.id)

        assert len(_activities(db, task.id)) == activities
        assert db.query(models.Notification).count() == notifications

    def test_assign_requires_manager(self, db, owner, project, alice):
        task = tasks.create(db, owner.id, project.id, "Review")
        with pytest.raises(ForbiddenError):
            tasks.assign_user(db, alice.id, task.id, alice.id)

    def test_assignee_must_have_access(self, db, owner, project, make_user):
        task = tasks.create(db, owner.id, project.id, "Review")
        with pytest.raises(BadRequestError):
            tasks.assign_user(db, owner.id, task.id, make_user("outsider").id)
        with pytest.raises(NotFoundError):
            tasks.assign_user(db, owner.id, task.id, uuid4())

    def test_unassign(self, db, owner, project, alice):
        task = tasks.create(db, owner.id, project.id, "Review", assignee_ids=[alice.id])

        updated = tasks.unassign_user(db, owner.id, task.id, alice.id)
        assert updated.assignees == []
        assert _activities(db, task.id)[-1].type == ActivityType.UNASSIGNED

        with pytest.raises(NotFoundError):
            tasks.unassign_user(db, owner.id, task.id, alice.id)


class TestDeleteTask:
    """Test hard deletion."""

    def test_delete_keeps_orphan_activity(self, db, owner, project, manager, publisher):
        task = tasks.create(db, owner.id, project.id, "Obsolete")
        tasks.create(db, owner.id, project.id, "Child", parent_id=task.id)
        task_id = task.id

        tasks.delete(db, manager.id, task_id, publisher=publisher)

        assert db.query(models.Task).count() == 0
        [activity] = db.query(models.Activity).filter(models.Activity.type == ActivityType.DELETED).all()
        assert activity.task_id is None
        assert activity.project_id == project.id
        assert activity.meta == {"taskTitle": "Obsolete", "taskNumber": 1}
        assert publisher.named("task:deleted")[0][1] == {"taskId": str(task_id)}

    def test_delete_requires_manager(self, db, owner, project, alice):
        task = tasks.create(db, owner.id, project.id, "Keep")
        with pytest.raises(ForbiddenError):
            tasks.delete(db, alice.id, task.id)


class TestComments:
    """Test comment threads."""

    def test_comment_and_reply(self, db, owner, project, alice, publisher):
        task = tasks.create(db, owner.id, project.id, "Discuss")
        comment = tasks.add_comment(db, alice.id, task.id, "First!", publisher=publisher)
        reply = tasks.add_comment(db, owner.id, task.id, "Thanks", parent_id=comment.id)

        assert _activities(db, task.id)[-1].type == ActivityType.COMMENTED
        assert publisher.named("task:comment_added")[0][1]["content"] == "First!"

        [top] = tasks.get_comments(db, owner.id, task.id)
        assert top.id == comment.id
        assert [r.id for r in top.replies] == [reply.id]

        with pytest.raises(BadRequestError):
            tasks.add_comment(db, owner.id, task.id, "Too deep", parent_id=reply.id)

    def test_only_author_edits_or_deletes(self, db, owner, project, alice, publisher):
        task = tasks.create(db, owner.id, project.id, "Discuss")
        comment = tasks.add_comment(db, alice.id, task.id, "Mine")

        with pytest.raises(ForbiddenError):
            tasks.update_comment(db, owner.id, comment.id, "Edited by owner")
        with pytest.raises(ForbiddenError):
            tasks.delete_comment(db, owner.id, comment.id)

        assert tasks.update_comment(db, alice.id, comment.id, "Edited").content == "Edited"
        comment_id = comment.id
        tasks.delete_comment(db, alice.id, comment_id, publisher=publisher)
        assert tasks.get_comments(db, owner.id, task.id) == []
        assert publisher.named("task:comment_deleted")[0][1]["commentId"] == str(comment_id)


class TestAttachments:
    """Test attachment records."""

    def test_add_and_delete(self, db, owner, project, alice):
        task = tasks.create(db, owner.id, project.id, "Design")
        attachment = tasks.add_attachment(
            db, alice.id, task.id, "mockup.png", "https://files.test/mockup.png",
            public_id="tasks/mockup", size=2048, mime_type="image/png",
        )
        assert attachment.uploaded_by_id == alice.id

        with pytest.raises(ForbiddenError):
            tasks.delete_attachment(db, owner.id, attachment.id)
        assert tasks.delete_attachment(db, alice.id, attachment.id) == "tasks/mockup"
        assert db.query(models.Attachment).count() == 0


class TestActivityFeed:
    def test_get_activity_is_limited(self, db, owner, project):
        task = tasks.create(db, owner.id, project.id, "Busy")
        for priority in (TaskPriority.LOW, TaskPriority.HIGH, TaskPriority.URGENT):
            tasks.update(db, owner.id, task.id, {"priority": priority})

        assert len(tasks.get_activity(db, owner.id, task.id)) == 4
        assert len(tasks.get_activity(db, owner.id, task.id, limit=2)) == 2
