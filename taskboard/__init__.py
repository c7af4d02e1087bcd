import logging
import sys

from .access_gate import AccessGate
from .config import ServerSettings, StoreConfig
from .models import SessionUser, Task, TaskDraft
from .session_client import CookieMutation, IdentityResolution, SessionClient
from .store_result import FailureReason, StoreError, StoreResult
from .task_board import BoardRegistry, TaskBoard
from .task_store import TaskStoreClient
from .web_app import create_app

time_format = "%Y-%m-%d %I:%M.%S %p"

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
stream_handler = logging.StreamHandler(sys.stdout)

formatter = logging.Formatter(fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s', datefmt=time_format)
stream_handler.setFormatter(formatter)

logger.addHandler(stream_handler)
