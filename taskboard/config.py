import os
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from .constants import DEFAULT_MAX_VIEWS


load_dotenv()


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


class StoreConfig(BaseModel):
    """
    Network location and public credential of the remote store.

    Built once at startup and handed to every component that needs a store
    client, so tests can construct one directly instead of patching the
    environment.
    """
    model_config = ConfigDict(frozen=True)

    url: str
    anon_key: str
    session_cookie_name: Optional[str] = None

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Store URL must be http(s), got: {v!r}")
        return v

    @property
    def project_ref(self) -> str:
        host = urlparse(self.url).hostname or ""
        return host.split(".")[0]

    @property
    def auth_cookie_name(self) -> str:
        """Name of the cookie holding the serialized auth session."""
        return self.session_cookie_name or f"sb-{self.project_ref}-auth-token"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        url = _first_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
        anon_key = _first_env("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY")
        if not url:
            raise ValueError("SUPABASE_URL is not set in environment.")
        if not anon_key:
            raise ValueError("SUPABASE_ANON_KEY is not set in environment.")
        return cls(
            url=url,
            anon_key=anon_key,
            session_cookie_name=_first_env("TASKBOARD_SESSION_COOKIE"),
        )


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    max_views: int = DEFAULT_MAX_VIEWS

    @classmethod
    def from_env(cls) -> "ServerSettings":
        settings = {
            "host": _first_env("TASKBOARD_HOST"),
            "port": _first_env("TASKBOARD_PORT"),
            "log_level": _first_env("TASKBOARD_LOG_LEVEL"),
            "max_views": _first_env("TASKBOARD_MAX_VIEWS"),
        }
        # Unset variables fall back to the field defaults
        return cls(**{k: v for k, v in settings.items() if v is not None})
