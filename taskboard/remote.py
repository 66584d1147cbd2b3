"""
Remote task store over HTTP (PostgREST-style REST API).

Tables:
    tasks           id, title, description, due_date, status, progress, created_by, created_at
    task_assignees  task_id, user_id
    profiles        id, full_name

Row-level access is enforced server-side from the bearer token, so
``fetch_tasks`` returns exactly what the signed-in identity may see.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import requests

from .errors import NotFound, StoreUnavailable, ValidationFailed
from .schema import Lane, Person, Task

logger = logging.getLogger(__name__)

TASK_SELECT = (
    "id,title,description,due_date,status,progress,created_at,"
    "creator:profiles!created_by(id,full_name),"
    "task_assignees(profiles(id,full_name))"
)


class RestGateway:
    """Persistence gateway backed by a PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        access_token: Optional[str] = None,
        identity: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("api_url is required for the rest backend")
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Content-Type": "application/json",
        })
        if access_token or api_key:
            self.session.headers.update({"Authorization": f"Bearer {access_token or api_key}"})

    # ---------- transport ----------
    def _request(self, method: str, table: str, action: str, *, params=None, json=None,
                 returning: bool = False) -> Any:
        url = f"{self.base_url}/rest/v1/{table}"
        headers = {"Prefer": "return=representation"} if returning else {}
        try:
            r = self.session.request(method, url, params=params, json=json,
                                     headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{action}: {e}")
            raise StoreUnavailable(f"{action} failed: {e}") from e

        # Missing rows come back as an empty list, so 404 means a bad endpoint.
        if r.status_code in (400, 409, 422):
            logger.error(f"{action} rejected: {r.status_code} {r.text}")
            raise ValidationFailed(f"{action} rejected: {r.text}")
        if not r.ok:
            logger.error(f"{action} failed: {r.status_code} {r.text}")
            raise StoreUnavailable(f"{action} failed: {r.status_code} {r.text}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            logger.error(f"{action}: response is not JSON: {r.text[:200]}")
            raise StoreUnavailable(f"{action} failed: response is not JSON") from e

    # ---------- directory ----------
    def list_assignable_users(self) -> List[Person]:
        rows = self._request("GET", "profiles", "list users",
                             params={"select": "id,full_name", "order": "full_name.asc"})
        return [Person.from_dict(row) for row in rows or []]

    # ---------- tasks ----------
    def fetch_tasks(self) -> List[Task]:
        rows = self._request("GET", "tasks", "fetch tasks",
                             params={"select": TASK_SELECT, "order": "created_at.asc"})
        return [self._row_to_task(row) for row in rows or []]

    def create_task(self, title: str, due_date: date, description: str = "",
                    lane: Lane = Lane.UPCOMING, progress: int = 0) -> Task:
        if not (title or "").strip():
            raise ValidationFailed("title is required")
        if not due_date:
            raise ValidationFailed("due date is required")
        payload = {
            "title": title.strip(),
            "description": description or "",
            "due_date": due_date.isoformat(),
            "status": lane.value,
            "progress": progress,
        }
        if self.identity:
            payload["created_by"] = self.identity
        rows = self._request("POST", "tasks", "create task", json=payload, returning=True)
        if not rows:
            raise StoreUnavailable("create task returned no row")
        return self._row_to_task(rows[0])

    def assign_users(self, task_id: str, user_ids: Sequence[str]) -> None:
        if not user_ids:
            return
        # A bulk insert is a single statement: every link lands or none do.
        self._request("POST", "task_assignees", "assign users",
                      json=[{"task_id": task_id, "user_id": uid} for uid in user_ids])

    def set_lane(self, task_id: str, lane: Lane) -> Task:
        rows = self._request("PATCH", "tasks", "set lane",
                             params={"id": f"eq.{task_id}", "select": TASK_SELECT},
                             json={"status": lane.value}, returning=True)
        if not rows:
            raise NotFound(f"Task {task_id} not found", task_id=task_id)
        return self._row_to_task(rows[0])

    def delete_task(self, task_id: str) -> None:
        rows = self._request("DELETE", "tasks", "delete task",
                             params={"id": f"eq.{task_id}"}, returning=True)
        if not rows:
            raise NotFound(f"Task {task_id} not found", task_id=task_id)

    def _row_to_task(self, row: Dict[str, Any]) -> Task:
        try:
            data = dict(row)
            data["created_by"] = data.pop("creator", None) or data.get("created_by")
            data["assignees"] = [
                link["profiles"] for link in data.pop("task_assignees", None) or []
                if link.get("profiles")
            ]
            return Task.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed task row: {row!r}")
            raise StoreUnavailable(f"Malformed task row: {e}") from e
