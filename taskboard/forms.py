"""Create-task dialog controller."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .board import BoardStore
from .errors import BoardError, ValidationFailed
from .events import BoardEventBridge
from .gateway import CallTimedOut, LateCalls, PersistenceGateway, call_gateway, settled
from .schema import Lane, Person, Task, TaskDraft, parse_date

logger = logging.getLogger(__name__)


def validate_draft(draft: TaskDraft) -> Dict[str, Any]:
    """Normalize a draft into create_task arguments. Raises ValidationFailed."""
    title = (draft.title or "").strip()
    if not title:
        raise ValidationFailed("title is required")
    due_date = parse_date(draft.due_date)
    if due_date is None:
        raise ValidationFailed("due date is required")
    try:
        progress = int(draft.progress or 0)
    except (TypeError, ValueError):
        raise ValidationFailed(f"progress must be a number, got {draft.progress!r}")
    if not 0 <= progress <= 100:
        raise ValidationFailed("progress must be between 0 and 100")
    return {
        "title": title,
        "due_date": due_date,
        "description": draft.description or "",
        "lane": Lane.from_str(draft.lane),
        "progress": progress,
    }


class TaskFormController:
    """
    Holds the dialog state and submits drafts.

    A draft is only cleared after the task and its assignment links are
    stored. On any failure the dialog stays open with the draft as typed and
    ``error`` set.
    """

    def __init__(
        self,
        board: BoardStore,
        gateway: PersistenceGateway,
        bridge: Optional[BoardEventBridge] = None,
        timeout: float = 10.0,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.board = board
        self.gateway = gateway
        self.bridge = bridge or BoardEventBridge()
        self.timeout = timeout
        self._lock = lock or asyncio.Lock()
        self.is_open = False
        self.draft = TaskDraft()
        self.error: Optional[BoardError] = None
        self._directory: List[Person] = []
        self.late_calls = LateCalls()

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def update(self, **fields) -> TaskDraft:
        for name, value in fields.items():
            if not hasattr(self.draft, name):
                raise AttributeError(f"TaskDraft has no field {name!r}")
            setattr(self.draft, name, value)
        return self.draft

    def reset(self) -> None:
        self.draft = TaskDraft()
        self.error = None

    async def assignable_users(self) -> List[Person]:
        self._directory = await call_gateway(self.gateway.list_assignable_users, timeout=self.timeout)
        return list(self._directory)

    async def submit(self, draft: Optional[TaskDraft] = None) -> Optional[Task]:
        """Validate and create. Returns the new task, or None with ``error`` set."""
        if draft is not None:
            self.draft = draft
        draft = self.draft
        self.is_open = True

        try:
            fields = validate_draft(draft)
        except ValidationFailed as e:
            return self._fail(e)

        async with self._lock:
            try:
                task = await call_gateway(
                    self.gateway.create_task,
                    fields["title"], fields["due_date"], fields["description"],
                    fields["lane"], fields["progress"],
                    timeout=self.timeout,
                )
            except BoardError as e:
                if isinstance(e, CallTimedOut):
                    self.late_calls.schedule(self._discard_late(e.pending))
                return self._fail(e)

            if draft.assignee_ids:
                try:
                    await call_gateway(self.gateway.assign_users, task.task_id,
                                       list(draft.assignee_ids), timeout=self.timeout)
                except BoardError as e:
                    await self._discard(task)
                    return self._fail(e)
                task.assignees = await self._resolve(draft.assignee_ids)

            self.board.upsert_one(task)
            self.board.set_expanded(task.task_id, True)

        self.reset()
        self.close()
        logger.info(f"Task {task.task_id} created: {task.title}")
        self.bridge.emit("task_created", task=task)
        return task

    async def _resolve(self, user_ids: List[str]) -> List[Person]:
        """Assignee ids to people, reloading the directory for unknown ids."""
        names = {p.id: p.name for p in self._directory}
        if any(uid not in names for uid in user_ids):
            try:
                await self.assignable_users()
            except BoardError as e:
                # Names fill in on the next full fetch.
                logger.warning(f"Directory lookup failed: {e}")
            names = {p.id: p.name for p in self._directory}
        return [Person(id=uid, name=names.get(uid, "")) for uid in user_ids]

    async def _discard(self, task: Task) -> None:
        """Undo a creation whose assignments failed."""
        try:
            await call_gateway(self.gateway.delete_task, task.task_id, timeout=self.timeout)
        except BoardError as e:
            logger.error(f"Could not remove half-created task {task.task_id}: {e}")

    async def _discard_late(self, pending: asyncio.Future) -> None:
        """A create that timed out was reported as failed; remove it if it landed."""
        task = await settled(pending)
        if isinstance(task, Task):
            logger.info(f"Removing task {task.task_id} created after its timeout")
            await self._discard(task)

    def _fail(self, error: BoardError) -> None:
        self.error = error
        logger.warning(f"Task creation failed: {error}")
        self.bridge.notify(f"Could not create task: {error}", level="error", kind=error.kind)
        return None
