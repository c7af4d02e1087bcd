'''
Tests for the TaskStoreClient REST binding.
'''
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from taskboard.config import StoreConfig
from taskboard.models import Task, TaskDraft
from taskboard.store_result import FailureReason, StoreError
from taskboard.task_store import TaskStoreClient

STORE_URL = "https://abcdefgh.supabase.co"
TABLE_URL = f"{STORE_URL}/rest/v1/tasks"

ROW_1 = {"id": 1, "title": "A", "description": "B", "created_at": "2024-03-10T10:00:00+00:00"}
ROW_2 = {"id": 2, "title": "C", "description": "D", "created_at": "2024-03-10T11:00:00+00:00"}


def make_response(status, body=None, text=None):
    '''Response object as seen inside `async with session.request(...)`.'''
    response = MagicMock()
    response.status = status
    if text is None:
        text = "" if body is None else json.dumps(body)
    response.text = AsyncMock(return_value=text)
    return response


def make_context(response):
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def config():
    return StoreConfig(url=STORE_URL + "/", anon_key="anon-key")


@pytest.fixture
def mock_session():
    '''Fixture for a mocked aiohttp.ClientSession.'''
    session = MagicMock(spec=aiohttp.ClientSession)
    session.closed = False
    session.close = AsyncMock()
    return session


@pytest.fixture
def client(config, mock_session):
    return TaskStoreClient(config, session=mock_session)


def respond_with(session, response):
    session.request = MagicMock(return_value=make_context(response))


# --- select ---
@pytest.mark.asyncio
async def test_select_tasks_success(client, mock_session):
    respond_with(mock_session, make_response(200, [ROW_1, ROW_2]))

    result = await client.select_tasks()

    assert result.ok
    assert [t.id for t in result.data] == [1, 2]
    assert all(isinstance(t, Task) for t in result.data)
    args, kwargs = mock_session.request.call_args
    assert args == ("GET", TABLE_URL)
    assert kwargs["params"] == {"select": "*", "order": "created_at.asc"}
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert kwargs["headers"]["Authorization"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_select_tasks_empty_body_is_empty_list(client, mock_session):
    respond_with(mock_session, make_response(200, text=""))
    result = await client.select_tasks()
    assert result.ok
    assert result.data == []


@pytest.mark.asyncio
async def test_select_tasks_malformed_row(client, mock_session):
    respond_with(mock_session, make_response(200, [{"id": 1, "title": "no description"}]))
    result = await client.select_tasks()
    assert not result.ok
    assert result.error.reason == FailureReason.STORE


@pytest.mark.asyncio
async def test_select_tasks_network_error(client, mock_session):
    mock_session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
    result = await client.select_tasks()
    assert not result.ok
    assert result.error.reason == FailureReason.NETWORK
    with pytest.raises(StoreError):
        result.unwrap()


@pytest.mark.asyncio
async def test_every_request_authorizes_with_public_key(client, mock_session):
    respond_with(mock_session, make_response(204))
    await client.delete_task(7)
    headers = mock_session.request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer anon-key"
    assert headers["apikey"] == "anon-key"
    assert headers["Prefer"] == "return=minimal"


# --- insert ---
@pytest.mark.asyncio
async def test_insert_task_returns_stored_row(client, mock_session):
    respond_with(mock_session, make_response(201, ROW_1))

    result = await client.insert_task(TaskDraft(title="A", description="B"))

    assert result.ok
    assert result.data.id == 1
    args, kwargs = mock_session.request.call_args
    assert args == ("POST", TABLE_URL)
    assert kwargs["json"] == [{"title": "A", "description": "B"}]
    assert kwargs["headers"]["Prefer"] == "return=representation"
    assert kwargs["headers"]["Accept"] == "application/vnd.pgrst.object+json"


@pytest.mark.asyncio
async def test_insert_task_validation_failure(client, mock_session):
    body = {"code": "23502", "message": 'null value in column "title" violates not-null constraint'}
    respond_with(mock_session, make_response(400, body))

    result = await client.insert_task(TaskDraft())

    assert result.error.reason == FailureReason.VALIDATION
    assert result.error.status == 400
    assert "not-null" in result.error.message


# --- update ---
@pytest.mark.asyncio
async def test_update_task_filters_by_id(client, mock_session):
    respond_with(mock_session, make_response(200, dict(ROW_2, title="C2")))

    result = await client.update_task(2, "C2", "D")

    assert result.data.title == "C2"
    args, kwargs = mock_session.request.call_args
    assert args == ("PATCH", TABLE_URL)
    assert kwargs["params"]["id"] == "eq.2"
    assert kwargs["json"] == {"title": "C2", "description": "D"}


@pytest.mark.asyncio
async def test_update_missing_row_is_not_found(client, mock_session):
    body = {"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"}
    respond_with(mock_session, make_response(406, body))
    result = await client.update_task(42, "x", "y")
    assert result.error.reason == FailureReason.NOT_FOUND


@pytest.mark.asyncio
async def test_server_error_is_store_failure(client, mock_session):
    respond_with(mock_session, make_response(503, text="upstream unavailable"))
    result = await client.update_task(1, "x", "y")
    assert result.error.reason == FailureReason.STORE
    assert result.error.message == "upstream unavailable"


# --- delete ---
@pytest.mark.asyncio
async def test_delete_task_success(client, mock_session):
    respond_with(mock_session, make_response(204))

    result = await client.delete_task(1)

    assert result.ok
    assert result.data is None
    args, kwargs = mock_session.request.call_args
    assert args == ("DELETE", TABLE_URL)
    assert kwargs["params"] == {"id": "eq.1"}


@pytest.mark.asyncio
async def test_delete_task_unauthorized(client, mock_session):
    respond_with(mock_session, make_response(401, {"message": "permission denied for table tasks"}))
    result = await client.delete_task(1)
    assert result.error.reason == FailureReason.STORE
    assert result.error.status == 401


@pytest.mark.asyncio
async def test_close_leaves_shared_session_open(client, mock_session):
    await client.close()
    mock_session.close.assert_not_awaited()
