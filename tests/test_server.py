"""
Tests for the Flask JSON API.
"""
import pytest

from taskboard.config import Config
from taskboard.server import create_app
from taskboard.session import SessionRegistry
from taskboard.store import SqliteGateway

USER = {"X-User-Id": "u-jane"}


@pytest.fixture
def config(tmp_path):
    cfg = Config(db_path=str(tmp_path / "server.db"), request_timeout=5)
    gw = SqliteGateway(cfg.db_path)
    gw.add_profile("u-jane", "Jane Smith")
    gw.add_profile("u-john", "John Doe")
    return cfg


@pytest.fixture
def client(config):
    app = create_app(config)
    app.config["TESTING"] = True
    yield app.test_client()
    app.extensions["taskboard"]["runner"].stop()


def create(client, **fields):
    body = {"title": "Migrate database", "due_date": "2023-06-20", "lane": "Todo"}
    body.update(fields)
    return client.post("/api/tasks", json=body, headers=USER)


def lane_ids(board, lane):
    column = [c for c in board["columns"] if c["lane"] == lane][0]
    return [t["id"] for t in column["tasks"]]


def test_identity_required(client):
    """Test that requests without X-User-Id are refused"""
    assert client.get("/api/board").status_code == 401


def test_empty_board(client):
    """Test the three empty columns of a new board"""
    r = client.get("/api/board", headers=USER)
    assert r.status_code == 200
    data = r.get_json()
    assert [c["lane"] for c in data["columns"]] == ["Upcoming", "Todo", "Completed"]
    assert data["stats"]["total"] == 0


def test_create_task(client):
    """Test creating a task over the API"""
    r = create(client, assignee_ids=["u-john"])
    assert r.status_code == 201
    task_id = r.get_json()["id"]
    board = client.get("/api/board", headers=USER).get_json()
    assert lane_ids(board, "Todo") == [task_id]
    card = [c for c in board["columns"] if c["lane"] == "Todo"][0]["tasks"][0]
    assert card["expanded"] is True
    assert card["avatars"][0]["initials"] == "JD"


def test_create_task_validation_returns_draft(client):
    """Test that validation errors return the draft"""
    r = create(client, due_date="")
    assert r.status_code == 400
    data = r.get_json()
    assert data["kind"] == "validation_failed"
    assert data["draft"]["title"] == "Migrate database"


def test_drag_moves_task(client):
    """Test a drag that moves a task between lanes"""
    task_id = create(client).get_json()["id"]
    r = client.post("/api/drag", headers=USER, json={
        "draggableId": task_id,
        "source": {"droppableId": "Todo", "index": 0},
        "destination": {"droppableId": "Completed", "index": 0},
    })
    assert r.status_code == 200
    data = r.get_json()
    assert data["outcome"]["status"] == "moved"
    assert lane_ids(data, "Completed") == [task_id]
    assert lane_ids(data, "Todo") == []


def test_drag_noop_and_rejected(client):
    """Test no-op and rejected drags"""
    task_id = create(client).get_json()["id"]
    r = client.post("/api/drag", headers=USER, json={
        "draggableId": task_id, "source": {"droppableId": "Todo", "index": 0}, "destination": None,
    })
    assert r.get_json()["outcome"]["status"] == "noop"

    r = client.post("/api/drag", headers=USER, json={
        "draggableId": task_id,
        "source": {"droppableId": "Todo", "index": 0},
        "destination": {"droppableId": "Backlog", "index": 0},
    })
    assert r.status_code == 400
    assert r.get_json()["outcome"]["status"] == "rejected"


def test_drag_missing_task_conflicts(client):
    """Test that dragging an unknown task returns 409"""
    r = client.post("/api/drag", headers=USER, json={
        "task_id": "ghost", "source_lane": "Todo", "source_index": 0,
        "destination_lane": "Completed", "destination_index": 0,
    })
    assert r.status_code == 409
    assert r.get_json()["outcome"]["error"] == "not_found"


def test_expand_and_delete(client):
    """Test expansion toggling and deletion"""
    task_id = create(client).get_json()["id"]
    r = client.post(f"/api/tasks/{task_id}/expand", headers=USER)
    assert r.get_json() == {"id": task_id, "expanded": False}

    assert client.delete(f"/api/tasks/{task_id}", headers=USER).status_code == 200
    assert client.delete(f"/api/tasks/{task_id}", headers=USER).status_code == 404
    assert client.post(f"/api/tasks/{task_id}/expand", headers=USER).status_code == 404


def test_users_and_notices(client):
    """Test the user directory and notice feed"""
    users = client.get("/api/users", headers=USER).get_json()["users"]
    assert {"id": "u-john", "name": "John Doe"} in users

    create(client, title="")
    notices = client.get("/api/notices", headers=USER).get_json()["notices"]
    assert notices[0]["kind"] == "validation_failed"


def test_sessions_are_per_identity(client):
    """Test that identities get separate boards"""
    create(client)
    other = client.get("/api/board", headers={"X-User-Id": "u-john"}).get_json()
    # Same local database, separate in-memory boards
    assert other["stats"]["total"] == 1
    assert other["identity"] == "u-john"
    assert client.get("/health").get_json()["sessions"] == 2


def test_api_secret_guards_mutations(config):
    """Test that the API secret guards mutating routes"""
    config.api_secret = "s3cret"
    app = create_app(config)
    client = app.test_client()
    try:
        assert create(client).status_code == 401
        r = client.post("/api/tasks", headers={**USER, "X-API-Key": "wrong"},
                        json={"title": "x", "due_date": "2023-06-20"})
        assert r.status_code == 403
        r = client.post("/api/tasks", headers={**USER, "X-API-Key": "s3cret"},
                        json={"title": "x", "due_date": "2023-06-20"})
        assert r.status_code == 201
        assert client.get("/api/board", headers=USER).status_code == 200
    finally:
        app.extensions["taskboard"]["runner"].stop()


def test_bearer_token_is_never_reused_across_callers(config):
    """A caller without alice's token never gets her token-bearing session."""
    built = []

    def factory(identity, token):
        built.append((identity, token))
        return SqliteGateway(config.db_path, identity=identity)

    registry = SessionRegistry(factory)
    app = create_app(config, registry=registry)
    client = app.test_client()
    alice = {"X-User-Id": "alice"}
    try:
        first = client.get("/api/board", headers={**alice, "Authorization": "Bearer ALICE-SECRET"})
        second = client.get("/api/board", headers=alice)
        assert first.status_code == second.status_code == 200
        assert built == [("alice", "ALICE-SECRET"), ("alice", None)]
        assert registry.get("alice") is not registry.get("alice", "ALICE-SECRET")
        assert client.get("/health").get_json()["sessions"] == 2
    finally:
        app.extensions["taskboard"]["runner"].stop()


@pytest.mark.parametrize("body", [
    [1],
    {"draggableId": "x", "source": "Todo"},
])
def test_drag_malformed_body_is_rejected(client, body):
    """Non-object drag payloads get a 400 rejected outcome, not a 500."""
    r = client.post("/api/drag", headers=USER, json=body)
    assert r.status_code == 400
    assert r.get_json()["outcome"]["status"] == "rejected"


def test_create_task_non_object_body(client):
    """A JSON array is not a task draft."""
    r = client.post("/api/tasks", headers=USER, json=["Migrate database"])
    assert r.status_code == 400
    assert r.get_json()["kind"] == "validation_failed"
