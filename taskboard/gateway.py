"""Persistence gateway contract for task and assignment records."""
import asyncio
import functools
import logging
from datetime import date
from typing import Any, Callable, List, Optional, Protocol, Sequence, Set

from .errors import BoardError, StoreUnavailable
from .schema import Lane, Person, Task

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Interface for durable task storage.

    Implementations:
    - ``SqliteGateway`` (local SQLite file)
    - ``RestGateway`` (PostgREST-style HTTP store)

    Every method raises ``StoreUnavailable`` on connectivity or backend
    failure. Only the errors listed per method are raised otherwise.
    """

    def fetch_tasks(self) -> List[Task]:
        """All tasks visible to the current identity, assignees resolved,
        in creation order."""
        ...

    def create_task(
        self,
        title: str,
        due_date: date,
        description: str = "",
        lane: Lane = Lane.UPCOMING,
        progress: int = 0,
    ) -> Task:
        """Create a task and return it with its assigned id.

        Raises:
            ValidationFailed: title or due date missing.
        """
        ...

    def assign_users(self, task_id: str, user_ids: Sequence[str]) -> None:
        """Create assignment links. All links are created or none are.

        Raises:
            NotFound: the task does not exist.
        """
        ...

    def set_lane(self, task_id: str, lane: Lane) -> Task:
        """Persist a lane change and return the stored task.

        Raises:
            NotFound: the task no longer exists.
        """
        ...

    def delete_task(self, task_id: str) -> None:
        """Delete a task and its assignment links.

        Raises:
            NotFound: the task no longer exists.
        """
        ...

    def list_assignable_users(self) -> List[Person]:
        """Directory lookup for the assignee selector."""
        ...


def open_gateway(
    config,
    identity: Optional[str] = None,
    access_token: Optional[str] = None,
) -> PersistenceGateway:
    """Build the gateway named by ``config.backend`` for one identity.

    ``access_token`` is the signed-in identity's bearer token (REST only).
    """
    if config.backend == "rest":
        from .remote import RestGateway
        return RestGateway(
            config.api_url,
            api_key=config.api_key,
            access_token=access_token,
            identity=identity,
            timeout=config.request_timeout,
        )
    if config.backend == "sqlite":
        from .store import SqliteGateway
        return SqliteGateway(config.db_path, identity=identity)
    raise ValueError(f"Unknown backend: {config.backend}")


class CallTimedOut(StoreUnavailable):
    """A gateway call outlived its timeout. ``pending`` resolves when the
    worker thread finishes, so callers can reconcile a late write."""

    def __init__(self, message: str = "", task_id: str = "", pending: Optional[asyncio.Future] = None):
        super().__init__(message, task_id)
        self.pending = pending


async def call_gateway(fn: Callable[..., Any], *args, timeout: Optional[float] = 10.0) -> Any:
    """Run a blocking gateway call off the event loop, bounded by ``timeout``.

    A timeout is reported as ``CallTimedOut``, never assumed to be a success.
    Exceptions outside the BoardError taxonomy become ``StoreUnavailable``.
    """
    name = getattr(fn, "__name__", "gateway call")
    pending = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    try:
        return await asyncio.wait_for(asyncio.shield(pending), timeout)
    except asyncio.TimeoutError as e:
        pending.add_done_callback(functools.partial(_log_late, name))
        raise CallTimedOut(f"{name} timed out after {timeout}s", pending=pending) from e
    except BoardError:
        raise
    except Exception as e:
        logger.exception(f"{name} raised {type(e).__name__}")
        raise StoreUnavailable(f"{name} failed: {e}") from e


def _log_late(name: str, pending: asyncio.Future) -> None:
    if pending.cancelled():
        return
    error = pending.exception()
    if error is not None:
        logger.warning(f"{name} failed after timing out: {error}")
    else:
        logger.info(f"{name} finished after timing out")


async def settled(pending: asyncio.Future) -> Any:
    """Wait out a timed-out call. Returns its result, or None if it raised."""
    try:
        return await pending
    except Exception as e:
        logger.debug(f"Late gateway call raised: {e}")
        return None


class LateCalls:
    """Follow-ups scheduled on the loop for calls that timed out."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every scheduled follow-up has run."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
