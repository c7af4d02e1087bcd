from typing import List, Optional, Union
import datetime

from pydantic import BaseModel, ConfigDict

from .constants import TASK_FIELDS

TaskId = Union[int, str]


class TaskDraft(BaseModel):
    """Pending input of the creation form. Both fields start empty."""
    title: str = ""
    description: str = ""

    def missing_fields(self) -> List[str]:
        return [name for name in TASK_FIELDS if not getattr(self, name).strip()]


class Task(BaseModel):
    """A row of the tasks table as returned by the store."""
    model_config = ConfigDict(extra="ignore")

    id: TaskId  # assigned by the store, never changed afterwards
    title: str
    description: str
    created_at: datetime.datetime


class SessionUser(BaseModel):
    """The caller identity resolved from a session. Only presence matters to the gate."""
    model_config = ConfigDict(extra="allow")

    id: str
    email: Optional[str] = None
