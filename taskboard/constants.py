PROTECTED_PATH_PREFIX = "/admin"
LOGIN_PATH = "/login"

TASKS_TABLE = "tasks"
TASK_FIELDS = ("title", "description")

REST_PATH = "/rest/v1"
AUTH_PATH = "/auth/v1"

BASE_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

# PostgREST returns a bare object instead of a one-element array with this Accept header
SINGLE_OBJECT_ACCEPT = "application/vnd.pgrst.object+json"

VIEW_FIELD_NAME = "view"
DEFAULT_MAX_VIEWS = 256

# Seconds before actual expiry to treat a session as expired
TOKEN_EXPIRY_BUFFER = 60

SESSION_COOKIE_MAX_AGE = 400 * 24 * 60 * 60
SESSION_COOKIE_CHUNK_SIZE = 3180
BASE64_COOKIE_PREFIX = "base64-"


class TaskboardError(Exception):
    pass


class SessionError(TaskboardError):
    pass
