import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from .config import StoreConfig
from .constants import BASE_HEADERS, REST_PATH, SINGLE_OBJECT_ACCEPT, TASKS_TABLE
from .models import Task, TaskDraft, TaskId
from .store_result import FailureReason, StoreResult

logger = logging.getLogger(__name__)

# PostgREST error code for "single object requested, zero rows returned"
NO_ROWS_CODE = "PGRST116"


class TaskStoreClient:
    """
    REST binding to the remote tasks table.

    Every call returns a StoreResult; network and store failures are turned
    into typed failures instead of being raised.
    """

    def __init__(self, config: StoreConfig, session: Optional[aiohttp.ClientSession] = None,
                 table: str = TASKS_TABLE):
        """
        Args:
            config: Store location and public key.
            session: Optional shared aiohttp session. One is created lazily otherwise.
            table: Name of the table holding task rows.
        """
        self.config = config
        self.table_url = f"{config.url}{REST_PATH}/{table}"
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _get_headers(self, single: bool = False, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = BASE_HEADERS.copy()
        headers["apikey"] = self.config.anon_key
        headers["Authorization"] = f"Bearer {self.config.anon_key}"
        if single:
            headers["Accept"] = SINGLE_OBJECT_ACCEPT
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(self, method: str, params: Dict[str, str], payload: Any = None,
                       single: bool = False, prefer: Optional[str] = None) -> Tuple[int, Any, str]:
        session = await self._get_session()
        async with session.request(
            method,
            self.table_url,
            params=params,
            json=payload,
            headers=self._get_headers(single=single, prefer=prefer),
        ) as response:
            text = await response.text()
            body = None
            if text.strip():
                try:
                    body = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug(f"Non-JSON body from store ({response.status}): {text[:200]}")
            return response.status, body, text

    @staticmethod
    def _classify_failure(status: int, body: Any, text: str) -> StoreResult:
        message = text.strip() or "Empty response"
        code = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error_description") or body.get("error") or message
            code = body.get("code")

        if status == 404 or (status == 406 and code == NO_ROWS_CODE):
            return StoreResult.failure(FailureReason.NOT_FOUND, message, status)
        if status in (400, 409, 422):
            return StoreResult.failure(FailureReason.VALIDATION, message, status)
        return StoreResult.failure(FailureReason.STORE, message, status)

    async def _call(self, operation: str, method: str, params: Dict[str, str], payload: Any = None,
                    single: bool = False, prefer: Optional[str] = None):
        try:
            status, body, text = await self._request(method, params, payload, single, prefer)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Network error during {operation}: {e!r}")
            return None, StoreResult.failure(FailureReason.NETWORK, f"{type(e).__name__}: {e}")

        if not 200 <= status < 300:
            logger.debug(f"Store rejected {operation}: {status} - {text[:200]}")
            return None, self._classify_failure(status, body, text)
        return body, None

    @staticmethod
    def _parse_task(body: Any) -> StoreResult[Task]:
        try:
            return StoreResult.success(Task.model_validate(body))
        except ValidationError as e:
            return StoreResult.failure(FailureReason.STORE, f"Malformed task record: {e}")

    async def select_tasks(self) -> StoreResult[List[Task]]:
        """Fetch every task ordered by creation time, oldest first."""
        body, failure = await self._call(
            "select", "GET", {"select": "*", "order": "created_at.asc"}
        )
        if failure is not None:
            return failure
        if body is None:
            return StoreResult.success([])
        if not isinstance(body, list):
            return StoreResult.failure(FailureReason.STORE, f"Expected a list of tasks, got {type(body).__name__}")
        try:
            return StoreResult.success([Task.model_validate(row) for row in body])
        except ValidationError as e:
            return StoreResult.failure(FailureReason.STORE, f"Malformed task record: {e}")

    async def insert_task(self, draft: TaskDraft) -> StoreResult[Task]:
        """Insert a task and return the stored row with its assigned id and created_at."""
        body, failure = await self._call(
            "insert", "POST", {"select": "*"}, payload=[draft.model_dump()],
            single=True, prefer="return=representation",
        )
        if failure is not None:
            return failure
        return self._parse_task(body)

    async def update_task(self, task_id: TaskId, title: str, description: str) -> StoreResult[Task]:
        """Replace title and description of the task with the given id."""
        body, failure = await self._call(
            "update", "PATCH", {"id": f"eq.{task_id}", "select": "*"},
            payload={"title": title, "description": description},
            single=True, prefer="return=representation",
        )
        if failure is not None:
            return failure
        return self._parse_task(body)

    async def delete_task(self, task_id: TaskId) -> StoreResult[None]:
        _, failure = await self._call(
            "delete", "DELETE", {"id": f"eq.{task_id}"}, prefer="return=minimal"
        )
        if failure is not None:
            return failure
        return StoreResult.success(None)
