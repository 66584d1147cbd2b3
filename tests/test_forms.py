"""
Tests for the create-task dialog controller.
"""
import asyncio
import time
from datetime import date

import pytest

from taskboard.board import BoardStore
from taskboard.errors import StoreUnavailable, ValidationFailed
from taskboard.events import BoardEventBridge
from taskboard.forms import TaskFormController, validate_draft
from taskboard.schema import Lane, TaskDraft


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def controller(gateway):
    return TaskFormController(BoardStore(), gateway, BoardEventBridge())


class TestValidateDraft:

    def test_minimal_draft(self):
        """Test normalizing a minimal draft"""
        fields = validate_draft(TaskDraft(title=" Write docs ", due_date="2023-07-01"))
        assert fields["title"] == "Write docs"
        assert fields["due_date"] == date(2023, 7, 1)
        assert fields["lane"] is Lane.UPCOMING
        assert fields["progress"] == 0

    @pytest.mark.parametrize("draft", [
        TaskDraft(title="", due_date="2023-07-01"),
        TaskDraft(title="x", due_date=None),
        TaskDraft(title="x", due_date="soon"),
        TaskDraft(title="x", due_date="2023-07-01", lane="Archive"),
        TaskDraft(title="x", due_date="2023-07-01", progress=150),
        TaskDraft(title="x", due_date="2023-07-01", progress="lots"),
    ])
    def test_invalid_drafts(self, draft):
        """Test that malformed drafts are rejected"""
        with pytest.raises(ValidationFailed):
            validate_draft(draft)


def test_submit_creates_and_clears(controller, gateway):
    """Test that a successful submit stores, expands and clears"""
    controller.open()
    controller.update(title="Migrate database", due_date="2023-06-20", lane="Todo")
    task = run(controller.submit())

    assert task is not None
    assert task.lane is Lane.TODO
    assert controller.board.by_lane(Lane.TODO)[0].task_id == task.task_id
    assert controller.board.is_expanded(task.task_id)
    assert controller.draft == TaskDraft()
    assert controller.error is None
    assert not controller.is_open
    assert [t.task_id for t in gateway.fetch_tasks()] == [task.task_id]


def test_submit_with_assignees(controller, gateway):
    """Test submitting a draft with assignees"""
    run(controller.assignable_users())
    task = run(controller.submit(TaskDraft(title="Prototype", due_date=date(2023, 7, 5),
                                           assignee_ids=["u-john"])))
    assert [p.name for p in task.assignees] == ["John Doe"]
    stored = gateway.fetch_tasks()[0]
    assert [p.id for p in stored.assignees] == ["u-john"]


def test_missing_fields_keep_dialog_open(controller, gateway):
    """Test that missing fields keep the dialog and draft"""
    controller.open()
    controller.update(title="No due date", description="keep me")
    assert run(controller.submit()) is None

    assert controller.is_open
    assert controller.draft.title == "No due date"
    assert controller.draft.description == "keep me"
    assert isinstance(controller.error, ValidationFailed)
    assert gateway.fetch_tasks() == []
    assert controller.bridge.recent_notices()[0].kind == "validation_failed"


def test_store_failure_keeps_draft(mock_gateway):
    """Test that a store failure keeps the draft as typed"""
    mock_gateway.create_task.side_effect = StoreUnavailable("offline")
    controller = TaskFormController(BoardStore(), mock_gateway)
    draft = TaskDraft(title="Offline task", due_date="2023-06-20")

    assert run(controller.submit(draft)) is None
    assert controller.draft is draft
    assert controller.is_open
    assert controller.error.kind == "store_unavailable"
    assert len(controller.board) == 0


def test_failed_assignment_undoes_creation(controller, gateway):
    """Test that a failed assignment removes the created task"""
    draft = TaskDraft(title="Ghost assignee", due_date="2023-06-20", assignee_ids=["u-ghost"])
    assert run(controller.submit(draft)) is None
    assert gateway.fetch_tasks() == []
    assert len(controller.board) == 0
    assert controller.draft.assignee_ids == ["u-ghost"]


def test_update_unknown_field(controller):
    """Test that updating an unknown field raises"""
    with pytest.raises(AttributeError):
        controller.update(colour="red")


def test_create_landing_after_timeout_is_removed(mock_gateway, task_factory):
    """A create reported as timed out is deleted when it commits late, so a retry cannot duplicate it."""
    def slow_create(title, due_date, description, lane, progress):
        time.sleep(0.3)
        return task_factory("late-1", lane, title=title)

    mock_gateway.create_task.side_effect = slow_create
    controller = TaskFormController(BoardStore(), mock_gateway, timeout=0.05)

    async def scenario():
        task = await controller.submit(TaskDraft(title="Slow task", due_date="2023-06-20"))
        await controller.late_calls.drain()
        return task

    assert run(scenario()) is None
    assert controller.error.kind == "store_unavailable"
    assert controller.is_open
    mock_gateway.delete_task.assert_called_once_with("late-1")
    assert len(controller.board) == 0
