"""
Board session: one board per signed-in identity.

A session owns its BoardStore and wires the engine and form controller to
the same gateway, notification bridge and lock. Changing identity means a
new session built from a fresh fetch.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .avatar import avatar_for
from .board import BoardStore
from .errors import BoardError, NotFound
from .events import BoardEventBridge
from .engine import DragOutcome, DragTransitionEngine
from .forms import TaskFormController
from .gateway import CallTimedOut, PersistenceGateway, call_gateway
from .schema import Lane, LANES, Task

logger = logging.getLogger(__name__)


@dataclass
class Column:
    """One lane as rendered: the same shape for every lane."""
    lane: Lane
    tasks: List[Task]
    expanded: List[str]

    @property
    def title(self) -> str:
        return self.lane.title

    def to_dict(self) -> Dict[str, Any]:
        cards = []
        for index, task in enumerate(self.tasks):
            card = task.to_dict()
            card["index"] = index
            card["expanded"] = task.task_id in self.expanded
            card["avatars"] = [avatar_for(p.name or p.id) for p in task.assignees]
            if task.created_by:
                card["creator_avatar"] = avatar_for(task.created_by.name or task.created_by.id)
            cards.append(card)
        return {"lane": self.lane.value, "title": self.title, "count": len(cards), "tasks": cards}


class BoardSession:
    """Board state and operations for one identity."""

    def __init__(
        self,
        identity: str,
        gateway: PersistenceGateway,
        timeout: float = 10.0,
        resync_on_success: bool = True,
        notice_limit: int = 50,
    ):
        self.identity = identity
        self.gateway = gateway
        self.timeout = timeout
        self.board = BoardStore()
        self.bridge = BoardEventBridge(notice_limit=notice_limit)
        self.lock = asyncio.Lock()
        self.engine = DragTransitionEngine(
            self.board, gateway, self.bridge,
            timeout=timeout, resync_on_success=resync_on_success, lock=self.lock,
        )
        self.forms = TaskFormController(self.board, gateway, self.bridge,
                                        timeout=timeout, lock=self.lock)
        self.loaded = False

    # -------------------- reads --------------------

    def columns(self) -> List[Column]:
        expanded = self.board.expanded_ids()
        return [Column(lane=lane, tasks=self.board.by_lane(lane), expanded=expanded) for lane in LANES]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "columns": [c.to_dict() for c in self.columns()],
            "stats": self.board.stats(),
        }

    # -------------------- operations --------------------

    async def refresh(self) -> bool:
        """Full fetch into the board. Failures leave the board as it was."""
        async with self.lock:
            try:
                tasks = await call_gateway(self.gateway.fetch_tasks, timeout=self.timeout)
            except BoardError as e:
                logger.error(f"Board refresh for {self.identity} failed: {e}")
                self.bridge.notify(f"Could not load tasks: {e}", level="error", kind=e.kind)
                return False
            self.board.replace_all(tasks)
            self.loaded = True
        self.bridge.emit("board_refreshed", count=len(tasks))
        return True

    async def handle_drag_complete(self, event) -> DragOutcome:
        return await self.engine.handle_drag_complete(event)

    async def delete_task(self, task_id: str) -> bool:
        """
        Delete a task everywhere. A task that already vanished from the store
        is dropped locally and the board resynchronized; on store failure the
        board is left untouched.
        """
        async with self.lock:
            try:
                await call_gateway(self.gateway.delete_task, task_id, timeout=self.timeout)
            except NotFound as e:
                self.board.remove(task_id)
                self.bridge.notify(f"Task was already deleted: {e}", level="error",
                                   kind=e.kind, task_id=task_id)
                await self.engine.resync()
                return False
            except BoardError as e:
                logger.error(f"Delete of {task_id} failed: {e}")
                self.bridge.notify(f"Could not delete task: {e}", level="error",
                                   kind=e.kind, task_id=task_id)
                if isinstance(e, CallTimedOut):
                    self.engine.resync_when_settled(e.pending)
                return False
            self.board.remove(task_id)
        logger.info(f"Task {task_id} deleted")
        self.bridge.emit("task_deleted", task_id=task_id)
        return True

    def toggle_expansion(self, task_id: str) -> bool:
        return self.board.toggle_expanded(task_id)


class SessionRegistry:
    """
    Sessions keyed by identity and bearer token.

    ``factory(identity, access_token)`` builds the gateway for a new
    session. A gateway only ever carries the token of the request that
    opened it, so a caller presenting a different token (or none) gets a
    separate session and never reads through someone else's credentials.
    """

    def __init__(self, factory: Callable[..., PersistenceGateway], **session_options):
        self.factory = factory
        self.session_options = session_options
        self._sessions: Dict[Tuple[str, Optional[str]], BoardSession] = {}
        self._lock = threading.Lock()

    def get(self, identity: str, access_token: Optional[str] = None) -> BoardSession:
        key = (identity, access_token or None)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                gateway = self.factory(identity, key[1])
                session = BoardSession(identity, gateway, **self.session_options)
                self._sessions[key] = session
                logger.info(f"Opened board session for {identity}")
            return session

    def sign_out(self, identity: str, access_token: Optional[str] = None) -> bool:
        """Drop one token's session, or every session of ``identity`` when no token is given."""
        with self._lock:
            if access_token:
                return self._sessions.pop((identity, access_token), None) is not None
            keys = [k for k in self._sessions if k[0] == identity]
            for k in keys:
                del self._sessions[k]
            return bool(keys)

    def __len__(self) -> int:
        return len(self._sessions)
