"""
In-memory stand-ins for the remote store and the session service.
"""
import datetime
from typing import Dict, List, Mapping, Optional

from taskboard.models import SessionUser, Task, TaskDraft
from taskboard.session_client import CookieMutation, IdentityResolution
from taskboard.store_result import FailureReason, StoreResult

BASE_TIME = datetime.datetime(2024, 3, 10, 10, 0, 0, tzinfo=datetime.timezone.utc)


def make_task(task_id: int, title: str = None, description: str = None) -> Task:
    return Task(
        id=task_id,
        title=title if title is not None else f"Task {task_id}",
        description=description if description is not None else f"Description {task_id}",
        created_at=BASE_TIME + datetime.timedelta(minutes=task_id),
    )


class FakeTaskStore:
    """
    Behaves like the tasks table: assigns ids and created_at, keeps rows in
    insertion order. Failures can be queued per operation.
    """

    def __init__(self, tasks: Optional[List[Task]] = None):
        self.rows: List[Task] = list(tasks or [])
        self.next_id = max((int(t.id) for t in self.rows), default=0) + 1
        self.calls: List[tuple] = []
        self._failures: Dict[str, StoreResult] = {}

    def fail_next(self, operation: str, reason: FailureReason = FailureReason.NETWORK,
                  message: str = "connection refused") -> None:
        self._failures[operation] = StoreResult.failure(reason, message)

    def _pop_failure(self, operation: str) -> Optional[StoreResult]:
        return self._failures.pop(operation, None)

    async def select_tasks(self) -> StoreResult:
        self.calls.append(("select",))
        failure = self._pop_failure("select")
        if failure:
            return failure
        return StoreResult.success(sorted(self.rows, key=lambda t: t.created_at))

    async def insert_task(self, draft: TaskDraft) -> StoreResult:
        self.calls.append(("insert", draft.title, draft.description))
        failure = self._pop_failure("insert")
        if failure:
            return failure
        task = make_task(self.next_id, draft.title, draft.description)
        self.next_id += 1
        self.rows.append(task)
        return StoreResult.success(task)

    async def update_task(self, task_id, title: str, description: str) -> StoreResult:
        self.calls.append(("update", task_id, title, description))
        failure = self._pop_failure("update")
        if failure:
            return failure
        for i, row in enumerate(self.rows):
            if str(row.id) == str(task_id):
                self.rows[i] = row.model_copy(update={"title": title, "description": description})
                return StoreResult.success(self.rows[i])
        return StoreResult.failure(FailureReason.NOT_FOUND, "JSON object requested, multiple (or no) rows returned", 406)

    async def delete_task(self, task_id) -> StoreResult:
        self.calls.append(("delete", task_id))
        failure = self._pop_failure("delete")
        if failure:
            return failure
        self.rows = [row for row in self.rows if str(row.id) != str(task_id)]
        return StoreResult.success(None)


class FakeSessionClient:
    """Resolves a fixed identity regardless of cookies and records what it saw."""

    def __init__(self, user: Optional[SessionUser] = None, mutations: Optional[List[CookieMutation]] = None,
                 error: Optional[str] = None):
        self.user = user
        self.mutations = list(mutations or [])
        self.error = error
        self.seen_cookies: List[dict] = []
        self.valid_credentials: Dict[str, str] = {}

    async def resolve_identity(self, cookies: Mapping[str, str]) -> IdentityResolution:
        self.seen_cookies.append(dict(cookies))
        return IdentityResolution(user=self.user, cookie_mutations=list(self.mutations), error=self.error)

    async def sign_in_with_password(self, email: str, password: str, cookies=None) -> IdentityResolution:
        if self.valid_credentials.get(email) != password:
            return IdentityResolution(error="400 - Invalid login credentials")
        return IdentityResolution(
            user=SessionUser(id="user-1", email=email),
            cookie_mutations=[CookieMutation(name="sb-abc-auth-token", value="base64-session")],
        )

    async def sign_out(self, cookies: Mapping[str, str]) -> List[CookieMutation]:
        return [CookieMutation(name="sb-abc-auth-token", remove=True, options={"path": "/"})]
