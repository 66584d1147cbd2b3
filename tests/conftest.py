"""Shared fixtures for task board tests."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from taskboard.board import BoardStore
from taskboard.schema import Lane, Person, Task
from taskboard.store import SqliteGateway


def make_task(task_id, lane=Lane.TODO, title=None, **kwargs):
    return Task(
        task_id=task_id,
        title=title or f"Task {task_id}",
        due_date=kwargs.pop("due_date", date(2023, 6, 15)),
        lane=lane,
        **kwargs,
    )


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def gateway(tmp_path):
    """SQLite gateway on a throwaway database with a small directory."""
    gw = SqliteGateway(str(tmp_path / "board.db"), identity="u-jane")
    gw.add_profile("u-jane", "Jane Smith")
    gw.add_profile("u-john", "John Doe")
    return gw


@pytest.fixture
def seeded(gateway):
    """Gateway holding one task per lane, created in Upcoming, Todo, Completed order."""
    tasks = [
        gateway.create_task("Implement security protocols", date(2023, 6, 15), lane=Lane.UPCOMING),
        gateway.create_task("Migrate database", date(2023, 6, 20), lane=Lane.TODO),
        gateway.create_task("Optimize website", date(2023, 6, 30), lane=Lane.COMPLETED, progress=100),
    ]
    return gateway, tasks


@pytest.fixture
def board():
    return BoardStore([
        make_task("1", Lane.TODO),
        make_task("2", Lane.UPCOMING),
        make_task("3", Lane.TODO),
        make_task("4", Lane.COMPLETED),
    ])


@pytest.fixture
def mock_gateway():
    """Gateway double: set_lane echoes the move, fetch returns what the test sets."""
    gw = MagicMock()
    gw.fetch_tasks.return_value = []
    gw.set_lane.side_effect = lambda task_id, lane: make_task(task_id, lane)
    gw.list_assignable_users.return_value = [Person("u-jane", "Jane Smith")]
    return gw
