import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from aiohttp import web

from .access_gate import USER_KEY, AccessGate
from .config import ServerSettings, StoreConfig
from .constants import LOGIN_PATH, PROTECTED_PATH_PREFIX, TASK_FIELDS, VIEW_FIELD_NAME
from .session_client import SessionClient, apply_cookie_mutations
from .task_board import BoardRegistry, TaskBoard, TaskStore
from .task_store import TaskStoreClient
from .views import render_admin_page, render_board_page, render_login_page

logger = logging.getLogger(__name__)

BOARDS_KEY = web.AppKey("boards", BoardRegistry)
SESSION_CLIENT_KEY = web.AppKey("session_client", SessionClient)


async def _current_board(request: web.Request) -> Tuple[str, TaskBoard]:
    """
    Board of the view that posted the form.

    Every rendered form carries its view id, so several tabs each keep their
    own board. Mounts a fresh one if the view is unknown or was dropped.
    """
    registry = request.app[BOARDS_KEY]
    data = await request.post()
    view_id = str(data.get(VIEW_FIELD_NAME, "")) or None
    board = registry.get(view_id)
    if board is None:
        logger.info("Unknown or expired page view, mounting a fresh board")
        view_id, board = await registry.mount()
    return view_id, board


def _board_response(board: TaskBoard, view_id: str) -> web.Response:
    return web.Response(text=render_board_page(board, view_id), content_type="text/html")


async def handle_board(request: web.Request) -> web.Response:
    """Display the page. Every display is a new view with a freshly loaded board."""
    view_id, board = await request.app[BOARDS_KEY].mount()
    return _board_response(board, view_id)


async def handle_create_task(request: web.Request) -> web.Response:
    view_id, board = await _current_board(request)
    data = await request.post()
    for name in TASK_FIELDS:
        board.update_input(name, str(data.get(name, "")))

    missing = board.form_data.missing_fields()
    if missing:
        logger.warning(f"Not creating task, required fields are blank: {', '.join(missing)}")
    else:
        await board.create()
    return _board_response(board, view_id)


async def handle_request_edit(request: web.Request) -> web.Response:
    view_id, board = await _current_board(request)
    task_id = request.match_info["task_id"]
    task = board.find_task(task_id)
    if task is None:
        logger.warning(f"Edit requested for task {task_id} which is not on the board")
    else:
        board.request_edit(task)
    return _board_response(board, view_id)


async def handle_save_edit(request: web.Request) -> web.Response:
    view_id, board = await _current_board(request)
    if board.current_task is None:
        logger.warning("Save requested but no task is being edited")
        return _board_response(board, view_id)

    data = await request.post()
    for name in TASK_FIELDS:
        if name in data:
            board.update_edit(name, str(data[name]))

    blank = [name for name in TASK_FIELDS if not getattr(board.current_task, name).strip()]
    if blank:
        logger.warning(f"Not saving task, required fields are blank: {', '.join(blank)}")
    else:
        await board.save_edit()
    return _board_response(board, view_id)


async def handle_cancel_edit(request: web.Request) -> web.Response:
    view_id, board = await _current_board(request)
    board.cancel_edit()
    return _board_response(board, view_id)


async def handle_delete_task(request: web.Request) -> web.Response:
    view_id, board = await _current_board(request)
    raw_id = request.match_info["task_id"]
    task = board.find_task(raw_id)
    # Unknown ids still go to the store
    await board.delete(task.id if task is not None else raw_id)
    return _board_response(board, view_id)


async def handle_login_page(request: web.Request) -> web.Response:
    return web.Response(text=render_login_page(), content_type="text/html")


async def handle_login(request: web.Request) -> web.Response:
    data = await request.post()
    email = str(data.get("email", "")).strip()
    password = str(data.get("password", ""))
    if not email or not password:
        return web.Response(text=render_login_page("Email and password are required.", email),
                            content_type="text/html", status=400)

    resolution = await request.app[SESSION_CLIENT_KEY].sign_in_with_password(email, password, request.cookies)
    if resolution.user is None:
        logger.warning(f"Sign in failed for {email}: {resolution.error}")
        return web.Response(text=render_login_page("Invalid email or password.", email),
                            content_type="text/html", status=401)

    logger.info(f"Signed in user {resolution.user.id}")
    redirect = web.HTTPFound(PROTECTED_PATH_PREFIX)
    apply_cookie_mutations(redirect, resolution.cookie_mutations)
    raise redirect


async def handle_logout(request: web.Request) -> web.Response:
    mutations = await request.app[SESSION_CLIENT_KEY].sign_out(request.cookies)
    redirect = web.HTTPFound(LOGIN_PATH)
    apply_cookie_mutations(redirect, mutations)
    raise redirect


async def handle_admin(request: web.Request) -> web.Response:
    # The access gate only lets requests with a user through to here
    return web.Response(text=render_admin_page(request[USER_KEY]), content_type="text/html")


async def handle_health(request: web.Request) -> web.Response:
    """Simple health check endpoint"""
    health_data = {
        "status": "ok",
        "service": "Task Manager",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "open_views": len(request.app[BOARDS_KEY]),
    }
    return web.json_response(health_data, status=200)


async def create_app(config: StoreConfig, settings: Optional[ServerSettings] = None,
                     store: Optional[TaskStore] = None,
                     session_client: Optional[SessionClient] = None) -> web.Application:
    """
    Create and configure the web application.

    Args:
        config: Store location and public key
        settings: Server settings, defaults are used when omitted
        store: Task store binding, a TaskStoreClient for the config when omitted
        session_client: Session client, a SessionClient for the config when omitted
    """
    settings = settings or ServerSettings()
    store = store if store is not None else TaskStoreClient(config)
    session_client = session_client if session_client is not None else SessionClient(config)

    gate = AccessGate(session_client)
    app = web.Application(middlewares=[gate.middleware])
    app[BOARDS_KEY] = BoardRegistry(store, max_views=settings.max_views)
    app[SESSION_CLIENT_KEY] = session_client

    app.router.add_get("/", handle_board)
    app.router.add_post("/tasks", handle_create_task)
    app.router.add_post("/tasks/edit", handle_save_edit)
    app.router.add_post("/tasks/edit/cancel", handle_cancel_edit)
    app.router.add_post("/tasks/{task_id}/edit", handle_request_edit)
    app.router.add_post("/tasks/{task_id}/delete", handle_delete_task)
    app.router.add_get(LOGIN_PATH, handle_login_page)
    app.router.add_post(LOGIN_PATH, handle_login)
    app.router.add_post("/logout", handle_logout)
    app.router.add_get(PROTECTED_PATH_PREFIX, handle_admin)
    app.router.add_get("/health", handle_health)

    async def close_clients(app: web.Application) -> None:
        for client in (store, session_client):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    app.on_cleanup.append(close_clients)
    return app
