import logging
from typing import Awaitable, Callable, Mapping, Protocol

from aiohttp import web
from yarl import URL

from .constants import LOGIN_PATH, PROTECTED_PATH_PREFIX
from .models import SessionUser
from .session_client import IdentityResolution, apply_cookie_mutations

logger = logging.getLogger(__name__)

USER_KEY = web.RequestKey("user", SessionUser)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class IdentityResolver(Protocol):
    async def resolve_identity(self, cookies: Mapping[str, str]) -> IdentityResolution: ...


class AccessGate:
    """
    Per-request interceptor guarding the protected path prefix.

    Runs before every handler. Callers without a resolvable user are
    redirected to the login page when they ask for a protected path; every
    other request passes through, carrying whatever cookie changes identity
    resolution staged.
    """

    def __init__(self, resolver: IdentityResolver, protected_prefix: str = PROTECTED_PATH_PREFIX,
                 login_path: str = LOGIN_PATH):
        self.resolver = resolver
        self.protected_prefix = protected_prefix
        self.login_path = login_path

    def is_protected(self, path: str) -> bool:
        return path.startswith(self.protected_prefix)

    def login_url(self, request: web.Request) -> str:
        return str(request.url.join(URL(self.login_path)))

    @web.middleware
    async def middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        resolution = await self.resolver.resolve_identity(request.cookies)
        if resolution.error:
            # A failed lookup counts as no user
            logger.warning(f"Could not resolve identity for {request.path}: {resolution.error}")
        request[USER_KEY] = resolution.user

        if not resolution.is_authenticated and self.is_protected(request.path):
            logger.info(f"Redirecting unauthenticated request for {request.path} to {self.login_path}")
            redirect = web.HTTPFound(self.login_url(request))
            apply_cookie_mutations(redirect, resolution.cookie_mutations)
            raise redirect

        try:
            response = await handler(request)
        except web.HTTPException as e:
            apply_cookie_mutations(e, resolution.cookie_mutations, overwrite=False)
            raise
        apply_cookie_mutations(response, resolution.cookie_mutations, overwrite=False)
        return response
