from html import escape
from typing import Optional

from .constants import VIEW_FIELD_NAME
from .models import SessionUser, Task
from .task_board import TaskBoard

PAGE_STYLE = """
        body { font-family: Arial, sans-serif; margin: 0; min-height: 100vh; display: flex; justify-content: center; align-items: center; }
        .board { width: 36rem; padding: 2rem 2.5rem; box-shadow: 0 10px 30px rgba(0,0,0,.2); }
        form.add { display: flex; flex-direction: column; align-items: center; gap: 1rem; }
        h1 { color: #4b5563; font-weight: 500; }
        input, textarea { width: 100%; padding: .5rem .75rem; border: 1px solid #6b7280; border-radius: 1rem; box-sizing: border-box; }
        button { cursor: pointer; border: 0; border-radius: 1rem; color: white; padding: .4rem .9rem; }
        .primary { background: black; font-size: 1.2rem; width: 100%; }
        .hint { color: #6b7280; margin-top: 1.25rem; }
        .task { display: flex; justify-content: space-between; align-items: center; background: #f3f4f6; border-radius: .75rem; padding: .5rem .75rem; margin-top: .75rem; }
        .task p { font-size: .9rem; color: #374151; }
        .actions { display: flex; gap: .5rem; }
        .edit { background: #16a34a; } .delete { background: #dc2626; }
        .modal { position: fixed; inset: 0; background: rgba(0,0,0,.5); display: flex; justify-content: center; align-items: center; }
        .modal .panel { background: white; border-radius: 1rem; padding: 1.5rem; width: 24rem; }
        .modal form { display: flex; flex-direction: column; gap: .75rem; }
        .modal .buttons { display: flex; justify-content: flex-end; gap: .5rem; }
        .cancel { background: #9ca3af; } .save { background: #2563eb; }
        .error { color: red; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{escape(title)}</title>
    <style>{PAGE_STYLE}</style>
</head>
<body>
{body}
</body>
</html>
"""


def _view_field(view_id: str) -> str:
    """Hidden input tying a form post to the page view that rendered it."""
    return f'<input type="hidden" name="{VIEW_FIELD_NAME}" value="{escape(view_id)}">'


def render_task(task: Task, view_id: str) -> str:
    view_field = _view_field(view_id)
    return f"""
        <div class="task">
            <div>
                <h2>{escape(task.title)}</h2>
                <p>{escape(task.description)}</p>
            </div>
            <div class="actions">
                <form method="post" action="/tasks/{escape(str(task.id))}/edit">{view_field}<button class="edit" type="submit">Edit</button></form>
                <form method="post" action="/tasks/{escape(str(task.id))}/delete">{view_field}<button class="delete" type="submit">Delete</button></form>
            </div>
        </div>"""


def render_task_list(board: TaskBoard, view_id: str) -> str:
    # Pages are rendered once load() has finished, so there is no loading state to show
    if not board.tasks:
        return '<p class="hint">No tasks available yet</p>'
    return "".join(render_task(task, view_id) for task in board.tasks)


def render_edit_modal(board: TaskBoard, view_id: str) -> str:
    task = board.current_task
    if not board.is_edit_modal_open or task is None:
        return ""
    return f"""
    <div class="modal">
        <div class="panel">
            <h2>Edit Task</h2>
            <form method="post" action="/tasks/edit">
                {_view_field(view_id)}
                <input type="text" name="title" value="{escape(task.title)}" required>
                <textarea name="description" required>{escape(task.description)}</textarea>
                <div class="buttons">
                    <button class="cancel" type="submit" formaction="/tasks/edit/cancel" formnovalidate>Cancel</button>
                    <button class="save" type="submit">Save</button>
                </div>
            </form>
        </div>
    </div>"""


def render_board_page(board: TaskBoard, view_id: str) -> str:
    body = f"""
    <div class="board">
        <form class="add" method="post" action="/tasks">
            <h1>Task Manager</h1>
            {_view_field(view_id)}
            <input type="text" name="title" value="{escape(board.form_data.title)}" placeholder="Title" required>
            <textarea name="description" placeholder="Description" required>{escape(board.form_data.description)}</textarea>
            <button class="primary" type="submit">Add Todo</button>
        </form>
        {render_task_list(board, view_id)}
    </div>
    {render_edit_modal(board, view_id)}"""
    return _page("Task Manager", body)


def render_login_page(error: Optional[str] = None, email: str = "") -> str:
    error_html = f'<p class="error">{escape(error)}</p>' if error else ""
    body = f"""
    <div class="board">
        <form class="add" method="post" action="/login">
            <h1>Sign in</h1>
            {error_html}
            <input type="email" name="email" value="{escape(email)}" placeholder="Email" required>
            <input type="password" name="password" placeholder="Password" required>
            <button class="primary" type="submit">Sign in</button>
        </form>
    </div>"""
    return _page("Sign in", body)


def render_admin_page(user: SessionUser) -> str:
    body = f"""
    <div class="board">
        <h1>Admin</h1>
        <p>Signed in as {escape(user.email or user.id)}</p>
        <p><a href="/">Back to tasks</a></p>
        <form method="post" action="/logout"><button class="delete" type="submit">Sign out</button></form>
    </div>"""
    return _page("Admin", body)
