"""
Drag transition engine: turns a finished drag gesture into a lane change.

Rules:
    no destination            → no-op
    dropped where it started  → no-op, no write
    otherwise                 → splice locally, persist the lane, then
                                resync (lane change) or keep the splice (reorder)

On failure the pre-gesture board is restored, a notice is emitted, and the
board is resynchronized from the gateway when reachable. A write that timed
out triggers one more fetch when it finally finishes. Gateway errors never
propagate out of ``handle_drag_complete``.

Only the lane is persisted. A reorder inside a lane lives in the local view
until the next full fetch replaces it.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .board import BoardStore
from .errors import BoardError, NotFound, StoreUnavailable, ValidationFailed
from .events import BoardEventBridge
from .gateway import CallTimedOut, LateCalls, PersistenceGateway, call_gateway, settled
from .schema import DragEvent, Lane

logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    NOOP = "noop"
    MOVED = "moved"              # lane changed and persisted
    REORDERED = "reordered"      # same lane, new index (local only)
    FAILED = "failed"            # gateway error, board rolled back
    REJECTED = "rejected"        # malformed event, nothing attempted


@dataclass
class DragOutcome:
    status: OutcomeStatus
    task_id: Optional[str] = None
    lane: Optional[Lane] = None
    error: str = ""              # error kind when failed/rejected
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status not in (OutcomeStatus.FAILED, OutcomeStatus.REJECTED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "task_id": self.task_id,
            "lane": self.lane.value if self.lane else None,
            "error": self.error,
            "message": self.message,
        }


class DragTransitionEngine:
    """Applies drag gestures to a BoardStore through a PersistenceGateway."""

    def __init__(
        self,
        board: BoardStore,
        gateway: PersistenceGateway,
        bridge: Optional[BoardEventBridge] = None,
        timeout: float = 10.0,
        resync_on_success: bool = True,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.board = board
        self.gateway = gateway
        self.bridge = bridge or BoardEventBridge()
        self.timeout = timeout
        self.resync_on_success = resync_on_success
        # Shared with the session so a mutation and its follow-up fetch
        # finish before the next one starts.
        self._lock = lock or asyncio.Lock()
        self.late_calls = LateCalls()

    async def handle_drag_complete(self, event: Union[DragEvent, Dict[str, Any]]) -> DragOutcome:
        if not isinstance(event, DragEvent):
            try:
                event = DragEvent.from_dict(event)
            except ValidationFailed as e:
                self.bridge.notify(f"Could not move task: {e}", level="error",
                                   kind=e.kind, task_id=e.task_id or None)
                return DragOutcome(OutcomeStatus.REJECTED, task_id=e.task_id or None,
                                   error=e.kind, message=str(e))

        if event.abandoned:
            return DragOutcome(OutcomeStatus.NOOP, task_id=event.task_id, lane=event.source_lane)
        if event.is_noop:
            return DragOutcome(OutcomeStatus.NOOP, task_id=event.task_id, lane=event.source_lane)

        async with self._lock:
            return await self._apply(event)

    async def _apply(self, event: DragEvent) -> DragOutcome:
        task_id = event.task_id
        lane = event.destination_lane

        current = self.board.position_of(task_id)
        if current is None:
            message = f"Task {task_id} is no longer on the board"
            logger.warning(message)
            self.bridge.notify(message, level="error", kind=NotFound.kind, task_id=task_id)
            await self.resync()
            return DragOutcome(OutcomeStatus.FAILED, task_id=task_id, error=NotFound.kind, message=message)

        if current != (event.source_lane, event.source_index):
            # Index drift from a fetch that landed mid-gesture; the id wins.
            logger.debug(f"Drag source drift for {task_id}: event={event.source_lane.value}:"
                         f"{event.source_index} board={current[0].value}:{current[1]}")

        lane_change = current[0] != lane
        before = self.board.snapshot()
        self.board.move(task_id, lane, event.destination_index)

        try:
            stored = await call_gateway(self.gateway.set_lane, task_id, lane, timeout=self.timeout)
        except Exception as exc:
            e = exc if isinstance(exc, BoardError) else StoreUnavailable(f"set_lane failed: {exc}", task_id=task_id)
            self.board.restore(before)
            logger.warning(f"Move of {task_id} to {lane.value} failed, rolled back: {e}")
            self.bridge.notify(f"Could not move task to {lane.value}: {e}", level="error",
                               kind=e.kind, task_id=task_id)
            resynced = await self.resync()
            if isinstance(e, NotFound) and not resynced:
                self.board.remove(task_id)
            if isinstance(e, CallTimedOut):
                self.resync_when_settled(e.pending)
            self.bridge.emit("move_failed", task_id=task_id, lane=lane, error=e)
            return DragOutcome(OutcomeStatus.FAILED, task_id=task_id, lane=current[0],
                               error=e.kind, message=str(e))

        if lane_change and self.resync_on_success:
            if not await self.resync():
                # Server accepted the lane; keep the splice with the stored row.
                self.board.upsert_one(stored)
        else:
            # Same lane keeps the spliced index; a disagreeing server lane wins.
            self.board.upsert_one(stored)

        status = OutcomeStatus.MOVED if lane_change else OutcomeStatus.REORDERED
        final_lane = self.board.lane_of(task_id) or stored.lane
        logger.info(f"Task {task_id} {status.value} to {final_lane.value}")
        self.bridge.emit("task_moved", task_id=task_id, lane=final_lane, status=status)
        return DragOutcome(status, task_id=task_id, lane=final_lane)

    async def resync(self) -> bool:
        """Replace the board from the gateway. Returns False if the fetch failed."""
        try:
            tasks = await call_gateway(self.gateway.fetch_tasks, timeout=self.timeout)
        except BoardError as e:
            logger.warning(f"Resync failed: {e}")
            return False
        self.board.replace_all(tasks)
        self.bridge.emit("board_refreshed", count=len(tasks))
        return True

    def resync_when_settled(self, pending: asyncio.Future) -> asyncio.Task:
        """Fetch again once a timed-out write finishes, so a late commit
        reaches the board."""
        async def follow_up():
            await settled(pending)
            async with self._lock:
                await self.resync()
        return self.late_calls.schedule(follow_up())
