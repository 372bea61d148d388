"""Per-request access control derived from the signed identity cookie."""
from typing import Callable, Iterable, NamedTuple, Optional
from urllib.parse import urlencode

from fastapi import Request

from .auth import read_identity_token
from .errors import LoginRequired
from .users import RoleStore

LOGIN_PATH = "/login"


class GateDecision(NamedTuple):
    allowed: bool
    username: Optional[str] = None
    redirect_url: Optional[str] = None


def login_redirect(return_url: str, message: Optional[str] = None) -> str:
    params = {"returnUrl": return_url}
    if message:
        params["message"] = message
    return f"{LOGIN_PATH}?{urlencode(params)}"


class AccessGate:
    """Maps an identity token to a pass/redirect decision for a set of roles.

    No server-side session: the username comes from the signed token, roles
    are looked up in the role store on every check.
    """

    def __init__(self, roles: RoleStore, secret_key: str):
        self._roles = roles
        self._secret_key = secret_key

    def identify(self, token: Optional[str]) -> Optional[str]:
        return read_identity_token(token, self._secret_key)

    def check(self, token: Optional[str], required_roles: Iterable[str], requested_path: str) -> GateDecision:
        required = tuple(required_roles)
        username = self.identify(token)
        if not required:
            return GateDecision(True, username)
        if username is None:
            return GateDecision(False, redirect_url=login_redirect(requested_path))
        if self._roles.roles_for_username(username) & set(required):
            return GateDecision(True, username)
        message = "This page requires one of the roles: " + ", ".join(required)
        return GateDecision(False, username, login_redirect(requested_path, message))


def authorize(*roles: str) -> Callable:
    """FastAPI dependency: resolves the current username or redirects to login."""

    async def dependency(request: Request) -> Optional[str]:
        gate: AccessGate = request.app.state.gate
        token = request.cookies.get(request.app.state.settings.cookie_name)
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        decision = gate.check(token, roles, path)
        if not decision.allowed:
            raise LoginRequired(decision.redirect_url)
        return decision.username

    return dependency
