import asyncio
import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import aiohttp
from aiohttp import web
from pydantic import ValidationError

from .config import StoreConfig
from .constants import (
    AUTH_PATH,
    BASE64_COOKIE_PREFIX,
    BASE_HEADERS,
    SESSION_COOKIE_CHUNK_SIZE,
    SESSION_COOKIE_MAX_AGE,
    TOKEN_EXPIRY_BUFFER,
    SessionError,
)
from .models import SessionUser

logger = logging.getLogger(__name__)

SESSION_COOKIE_OPTIONS = {"path": "/", "samesite": "Lax", "max_age": SESSION_COOKIE_MAX_AGE}


class RefreshRejectedError(SessionError):
    """The auth service refused the refresh token; the session is gone."""
    pass


@dataclass(frozen=True)
class CookieMutation:
    """A cookie write or removal to be applied to an outgoing response."""
    name: str
    value: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    remove: bool = False


@dataclass
class IdentityResolution:
    user: Optional[SessionUser] = None
    cookie_mutations: List[CookieMutation] = field(default_factory=list)
    # Set when resolution failed, as opposed to there being no session at all
    error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


def apply_cookie_mutations(response: web.StreamResponse, mutations: Iterable[CookieMutation],
                           overwrite: bool = True) -> None:
    """
    Apply staged cookie changes to a response.

    Args:
        response: The response (or HTTPException) about to be sent
        mutations: Cookie writes and removals to apply
        overwrite: When False, cookies the response already sets are left alone
    """
    for mutation in mutations:
        if not overwrite and mutation.name in response.cookies:
            continue
        if mutation.remove:
            response.del_cookie(mutation.name, path=mutation.options.get("path", "/"))
        else:
            response.set_cookie(mutation.name, mutation.value, **mutation.options)


def read_session_cookie(cookies: Mapping[str, str], name: str) -> Tuple[Optional[str], List[str]]:
    """
    Read the session cookie, joining chunked cookies (name.0, name.1, ...).

    Returns:
        The raw value (or None) and the names of the cookies that carried it
    """
    if cookies.get(name):
        return cookies[name], [name]
    chunk_names = []
    while f"{name}.{len(chunk_names)}" in cookies:
        chunk_names.append(f"{name}.{len(chunk_names)}")
    if not chunk_names:
        return None, []
    return "".join(cookies[n] for n in chunk_names), chunk_names


def decode_session(raw: str) -> Dict[str, Any]:
    """Decode a session cookie value, either raw JSON or base64url JSON."""
    text = raw
    if raw.startswith(BASE64_COOKIE_PREFIX):
        encoded = raw[len(BASE64_COOKIE_PREFIX):]
        try:
            text = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SessionError(f"Session cookie is not valid base64: {e}")
    try:
        session = json.loads(text)
    except json.JSONDecodeError as e:
        raise SessionError(f"Session cookie is not valid JSON: {e}")
    if not isinstance(session, dict) or not session.get("access_token"):
        raise SessionError("Session cookie has no access token.")
    return session


def encode_session(session: Dict[str, Any]) -> str:
    encoded = base64.urlsafe_b64encode(json.dumps(session, separators=(",", ":")).encode("utf-8"))
    return BASE64_COOKIE_PREFIX + encoded.decode("ascii").rstrip("=")


def is_session_expiring(session: Dict[str, Any], buffer_seconds: int = TOKEN_EXPIRY_BUFFER) -> bool:
    expires_at = session.get("expires_at")
    if not isinstance(expires_at, (int, float)):
        # Without an expiry the auth service decides
        return False
    return time.time() > (expires_at - buffer_seconds)


def removal_mutations(names: Iterable[str]) -> List[CookieMutation]:
    return [CookieMutation(name=n, remove=True, options={"path": "/"}) for n in names]


def session_cookie_mutations(cookie_name: str, session: Dict[str, Any],
                             previous_names: Iterable[str] = ()) -> List[CookieMutation]:
    """Cookie writes storing a session, chunked when too long for one cookie."""
    value = encode_session(session)
    if len(value) <= SESSION_COOKIE_CHUNK_SIZE:
        pieces = {cookie_name: value}
    else:
        pieces = {
            f"{cookie_name}.{i}": value[start:start + SESSION_COOKIE_CHUNK_SIZE]
            for i, start in enumerate(range(0, len(value), SESSION_COOKIE_CHUNK_SIZE))
        }
    mutations = [CookieMutation(name=n, value=v, options=dict(SESSION_COOKIE_OPTIONS)) for n, v in pieces.items()]
    mutations.extend(removal_mutations(n for n in previous_names if n not in pieces))
    return mutations


class SessionClient:
    """
    Session-aware client for the store's auth service.

    The client never writes cookies itself: every cookie change it wants is
    returned as CookieMutation values for the caller to apply to whichever
    response it ends up sending.
    """

    def __init__(self, config: StoreConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.cookie_name = config.auth_cookie_name
        self.auth_url = f"{config.url}{AUTH_PATH}"
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

    def _get_headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = BASE_HEADERS.copy()
        headers["apikey"] = self.config.anon_key
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _post_json(self, path: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None,
                         access_token: Optional[str] = None) -> Tuple[int, Any]:
        http = await self._get_session()
        try:
            async with http.post(f"{self.auth_url}{path}", params=params, json=payload,
                                 headers=self._get_headers(access_token)) as response:
                text = await response.text()
                try:
                    body = json.loads(text) if text.strip() else None
                except json.JSONDecodeError:
                    body = None
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SessionError(f"Auth service unreachable: {e!r}")

    @staticmethod
    def _error_text(status: int, body: Any) -> str:
        if isinstance(body, dict):
            detail = body.get("error_description") or body.get("msg") or body.get("message") or body.get("error")
            if detail:
                return f"{status} - {detail}"
        return f"{status} - Unknown error"

    @staticmethod
    def _normalize_session(body: Any) -> Dict[str, Any]:
        if not isinstance(body, dict) or not body.get("access_token"):
            raise SessionError("Auth service returned a session without an access token.")
        session = dict(body)
        if "expires_at" not in session and isinstance(session.get("expires_in"), (int, float)):
            session["expires_at"] = int(time.time() + session["expires_in"])
        return session

    async def _fetch_user(self, access_token: str) -> Optional[SessionUser]:
        """Look up the user owning the token. None means the token was refused."""
        http = await self._get_session()
        try:
            async with http.get(f"{self.auth_url}/user", headers=self._get_headers(access_token)) as response:
                if response.status in (401, 403):
                    return None
                text = await response.text()
                if response.status != 200:
                    raise SessionError(f"Unexpected response from auth service: {response.status} - {text[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SessionError(f"Auth service unreachable: {e!r}")
        try:
            return SessionUser.model_validate_json(text)
        except ValidationError as e:
            raise SessionError(f"Malformed user payload: {e}")

    async def _refresh_session(self, refresh_token: str) -> Dict[str, Any]:
        status, body = await self._post_json(
            "/token", {"refresh_token": refresh_token}, params={"grant_type": "refresh_token"}
        )
        if status == 200:
            return self._normalize_session(body)
        if status in (400, 401):
            raise RefreshRejectedError(f"Error refreshing session: {self._error_text(status, body)}")
        raise SessionError(f"Error refreshing session: {self._error_text(status, body)}")

    async def resolve_identity(self, cookies: Mapping[str, str]) -> IdentityResolution:
        """
        Resolve the caller from a request's cookies.

        Args:
            cookies: The inbound request's cookies

        Returns:
            The user (or None) plus the cookie changes the response should carry
        """
        raw, carrier_names = read_session_cookie(cookies, self.cookie_name)
        if raw is None:
            return IdentityResolution()
        try:
            session = decode_session(raw)
        except SessionError as e:
            logger.warning(f"Discarding unreadable session cookie: {e}")
            return IdentityResolution(cookie_mutations=removal_mutations(carrier_names), error=str(e))

        mutations: List[CookieMutation] = []
        refresh_token = session.get("refresh_token")
        try:
            refreshed = False
            if refresh_token and is_session_expiring(session):
                session = await self._refresh_session(refresh_token)
                mutations = session_cookie_mutations(self.cookie_name, session, carrier_names)
                refreshed = True

            user = await self._fetch_user(session["access_token"])
            if user is None and refresh_token and not refreshed:
                # Token refused before its recorded expiry, try once with a fresh one
                session = await self._refresh_session(refresh_token)
                mutations = session_cookie_mutations(self.cookie_name, session, carrier_names)
                user = await self._fetch_user(session["access_token"])
            return IdentityResolution(user=user, cookie_mutations=mutations)
        except RefreshRejectedError as e:
            logger.info(f"Session ended: {e}")
            return IdentityResolution(cookie_mutations=removal_mutations(carrier_names), error=str(e))
        except SessionError as e:
            logger.warning(f"Identity resolution failed: {e}")
            return IdentityResolution(cookie_mutations=mutations, error=str(e))

    async def sign_in_with_password(self, email: str, password: str,
                                    cookies: Optional[Mapping[str, str]] = None) -> IdentityResolution:
        """Exchange credentials for a session and stage it as a cookie."""
        _, previous_names = read_session_cookie(cookies or {}, self.cookie_name)
        try:
            status, body = await self._post_json(
                "/token", {"email": email, "password": password}, params={"grant_type": "password"}
            )
            if status != 200:
                return IdentityResolution(error=f"Sign in failed: {self._error_text(status, body)}")
            session = self._normalize_session(body)
            user = SessionUser.model_validate(session.get("user") or {})
        except ValidationError as e:
            return IdentityResolution(error=f"Sign in failed: malformed user payload: {e}")
        except SessionError as e:
            logger.warning(f"Sign in failed: {e}")
            return IdentityResolution(error=str(e))
        return IdentityResolution(
            user=user,
            cookie_mutations=session_cookie_mutations(self.cookie_name, session, previous_names),
        )

    async def sign_out(self, cookies: Mapping[str, str]) -> List[CookieMutation]:
        """Revoke the session (best effort) and return the cookie removals."""
        raw, carrier_names = read_session_cookie(cookies, self.cookie_name)
        if raw is None:
            return []
        try:
            session = decode_session(raw)
            status, body = await self._post_json("/logout", {}, access_token=session["access_token"])
            if status not in (200, 204):
                logger.warning(f"Sign out not confirmed by auth service: {self._error_text(status, body)}")
        except SessionError as e:
            logger.warning(f"Sign out failed, clearing cookies anyway: {e}")
        return removal_mutations(carrier_names)
