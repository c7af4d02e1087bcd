import logging
import secrets
from collections import OrderedDict
from typing import List, Optional, Protocol, Tuple

from .constants import DEFAULT_MAX_VIEWS, TASK_FIELDS
from .models import Task, TaskDraft, TaskId
from .store_result import StoreError, StoreResult

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    async def select_tasks(self) -> StoreResult[List[Task]]: ...

    async def insert_task(self, draft: TaskDraft) -> StoreResult[Task]: ...

    async def update_task(self, task_id: TaskId, title: str, description: str) -> StoreResult[Task]: ...

    async def delete_task(self, task_id: TaskId) -> StoreResult[None]: ...


class TaskBoard:
    """
    View-model of the task page.

    Holds a cached copy of the task list plus the form buffers. The store is
    authoritative: every list mutation waits for the store to confirm it, and
    a failed call is logged and leaves the board as it was.
    """

    def __init__(self, store: TaskStore):
        self.store = store
        self.tasks: List[Task] = []
        self.form_data = TaskDraft()
        self.loading: bool = False
        self.is_edit_modal_open: bool = False
        self.current_task: Optional[Task] = None

    async def load(self) -> None:
        """Fetch all tasks, replacing the local list on success."""
        self.loading = True
        try:
            tasks = (await self.store.select_tasks()).unwrap()
            self.tasks = list(tasks or [])
        except StoreError as e:
            logger.error(f"Fetch error: {e}")
        except Exception as e:
            logger.error(f"Fetch error: {e}", exc_info=True)
        finally:
            self.loading = False

    def update_input(self, name: str, value: str) -> None:
        if name not in TASK_FIELDS:
            logger.warning(f"Ignoring unknown form field: {name}")
            return
        self.form_data = self.form_data.model_copy(update={name: value})

    async def create(self) -> None:
        """Submit the pending input as a new task."""
        try:
            task = (await self.store.insert_task(self.form_data)).unwrap()
            self.tasks = [*self.tasks, task]
            self.form_data = TaskDraft()
        except StoreError as e:
            logger.error(f"Insert error: {e}")
        except Exception as e:
            logger.error(f"Insert error: {e}", exc_info=True)

    async def delete(self, task_id: TaskId) -> None:
        try:
            (await self.store.delete_task(task_id)).unwrap()
            self.tasks = [t for t in self.tasks if str(t.id) != str(task_id)]
        except StoreError as e:
            logger.error(f"Delete error: {e}")
        except Exception as e:
            logger.error(f"Delete error: {e}", exc_info=True)

    def request_edit(self, task: Task) -> None:
        # Edits go to a copy so the listed task only changes once the store confirms
        self.current_task = task.model_copy()
        self.is_edit_modal_open = True

    def update_edit(self, name: str, value: str) -> None:
        if self.current_task is None:
            logger.warning("No task is being edited")
            return
        if name not in TASK_FIELDS:
            logger.warning(f"Ignoring unknown edit field: {name}")
            return
        self.current_task = self.current_task.model_copy(update={name: value})

    def cancel_edit(self) -> None:
        self.is_edit_modal_open = False
        self.current_task = None

    async def save_edit(self) -> None:
        """Send the edited task to the store and swap in the stored version."""
        current = self.current_task
        if current is None:
            logger.error("Update error: no task is being edited")
            return
        try:
            updated = (await self.store.update_task(current.id, current.title, current.description)).unwrap()
            self.tasks = [updated if t.id == updated.id else t for t in self.tasks]
            self.is_edit_modal_open = False
            self.current_task = None
        except StoreError as e:
            logger.error(f"Update error: {e}")
        except Exception as e:
            logger.error(f"Update error: {e}", exc_info=True)

    def find_task(self, task_id: TaskId) -> Optional[Task]:
        for task in self.tasks:
            if str(task.id) == str(task_id):
                return task
        return None


class BoardRegistry:
    """Boards of live page views, keyed by view id. Oldest views are dropped first."""

    def __init__(self, store: TaskStore, max_views: int = DEFAULT_MAX_VIEWS):
        if max_views < 1:
            raise ValueError("max_views must be at least 1.")
        self.store = store
        self.max_views = max_views
        self._boards: "OrderedDict[str, TaskBoard]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._boards)

    def get(self, view_id: Optional[str]) -> Optional[TaskBoard]:
        if not view_id or view_id not in self._boards:
            return None
        self._boards.move_to_end(view_id)
        return self._boards[view_id]

    async def mount(self) -> Tuple[str, TaskBoard]:
        """Create a fresh board for a new page view and load it."""
        view_id = secrets.token_urlsafe(16)
        board = TaskBoard(self.store)
        self._boards[view_id] = board
        while len(self._boards) > self.max_views:
            dropped, _ = self._boards.popitem(last=False)
            logger.debug(f"Dropped board of view {dropped}")
        await board.load()
        return view_id, board
