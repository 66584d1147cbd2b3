"""
In-memory board state.

Holds every task of the current session keyed by id, the per-lane render
order, and per-task expansion flags. Lane membership is exactly
``task.lane``: every id sits in one lane's order list and nowhere else.
"""
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import NotFound
from .schema import Lane, LANES, Task


@dataclass(frozen=True)
class BoardSnapshot:
    """Immutable copy of the board used to roll back a failed move."""
    tasks: Tuple[Tuple[str, Task], ...]
    order: Tuple[Tuple[Lane, Tuple[str, ...]], ...]
    expanded: Tuple[str, ...]


def _empty_order() -> Dict[Lane, List[str]]:
    return {lane: [] for lane in LANES}


class BoardStore:
    """Lane-partitioned projection of all tasks for one session."""

    def __init__(self, tasks: Optional[Iterable[Task]] = None):
        self._lock = threading.RLock()
        self._tasks: Dict[str, Task] = {}
        self._order: Dict[Lane, List[str]] = _empty_order()
        self._expanded: Dict[str, bool] = {}
        if tasks:
            self.replace_all(tasks)

    # -------------------- reads --------------------

    def by_lane(self, lane: Lane) -> List[Task]:
        """Tasks of a lane in the order they were last supplied."""
        lane = Lane.from_str(lane)
        with self._lock:
            return [self._tasks[tid] for tid in self._order[lane]]

    def all(self) -> List[Task]:
        with self._lock:
            return [self._tasks[tid] for lane in LANES for tid in self._order[lane]]

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def lane_of(self, task_id: str) -> Optional[Lane]:
        task = self.get(task_id)
        return task.lane if task else None

    def position_of(self, task_id: str) -> Optional[Tuple[Lane, int]]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return task.lane, self._order[task.lane].index(task_id)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            stats = {lane.value: len(self._order[lane]) for lane in LANES}
            stats["total"] = len(self._tasks)
            return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, task_id) -> bool:
        with self._lock:
            return task_id in self._tasks

    # -------------------- mutations --------------------

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """
        Wholesale replace after a fetch.

        The new state is built aside and swapped in under the lock, so a
        reader sees either the old board or the new one. A repeated id keeps
        its last occurrence. Expansion flags of vanished ids are dropped.
        """
        new_tasks: Dict[str, Task] = {}
        new_order = _empty_order()
        for task in tasks:
            previous = new_tasks.get(task.task_id)
            if previous is not None:
                new_order[previous.lane].remove(task.task_id)
            new_tasks[task.task_id] = task
            new_order[task.lane].append(task.task_id)

        with self._lock:
            self._tasks = new_tasks
            self._order = new_order
            self._expanded = {tid: v for tid, v in self._expanded.items() if tid in new_tasks}

    def upsert_one(self, task: Task, index: Optional[int] = None) -> None:
        """
        Insert if absent, else overwrite by id.

        A task that stays in its lane keeps its position unless ``index`` is
        given; a task that changes lane is placed at ``index`` (or the end).
        """
        with self._lock:
            existing = self._tasks.get(task.task_id)
            if existing is not None:
                if existing.lane == task.lane and index is None:
                    self._tasks[task.task_id] = task
                    return
                self._order[existing.lane].remove(task.task_id)
            self._tasks[task.task_id] = task
            self._insert(task.lane, task.task_id, index)

    def move(self, task_id: str, lane: Lane, index: int) -> Task:
        """Splice a task into ``lane`` at ``index`` (local view only)."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFound(f"Task {task_id} is not on the board", task_id=task_id)
            moved = task if task.lane == lane else task.with_lane(lane)
            self.upsert_one(moved, index=index)
            return moved

    def remove(self, task_id: str) -> Optional[Task]:
        """Delete by id, evicting its expansion flag. Returns the removed task."""
        with self._lock:
            task = self._tasks.pop(task_id, None)
            if task is not None:
                self._order[task.lane].remove(task_id)
            self._expanded.pop(task_id, None)
            return task

    def _insert(self, lane: Lane, task_id: str, index: Optional[int]) -> None:
        ids = self._order[lane]
        if index is None or index >= len(ids):
            ids.append(task_id)
        else:
            ids.insert(max(index, 0), task_id)

    # -------------------- expansion flags --------------------

    def is_expanded(self, task_id: str) -> bool:
        with self._lock:
            return self._expanded.get(task_id, False)

    def set_expanded(self, task_id: str, expanded: bool = True) -> None:
        with self._lock:
            if task_id not in self._tasks:
                raise NotFound(f"Task {task_id} is not on the board", task_id=task_id)
            if expanded:
                self._expanded[task_id] = True
            else:
                self._expanded.pop(task_id, None)

    def toggle_expanded(self, task_id: str) -> bool:
        with self._lock:
            state = not self.is_expanded(task_id)
            self.set_expanded(task_id, state)
            return state

    def expanded_ids(self) -> List[str]:
        with self._lock:
            return list(self._expanded)

    # -------------------- rollback --------------------

    def snapshot(self) -> BoardSnapshot:
        with self._lock:
            return BoardSnapshot(
                tasks=tuple(self._tasks.items()),
                order=tuple((lane, tuple(ids)) for lane, ids in self._order.items()),
                expanded=tuple(self._expanded),
            )

    def restore(self, snapshot: BoardSnapshot) -> None:
        with self._lock:
            self._tasks = dict(snapshot.tasks)
            self._order = {lane: list(ids) for lane, ids in snapshot.order}
            self._expanded = {tid: True for tid in snapshot.expanded}
