"""
Access decisions for the application's views.

Each guard maps an ``AuthState`` to ``Allow``, ``Redirect(path)`` or
``Pending``. Pending means the state needed to decide has not loaded yet;
unloaded roles are never read as "no roles".
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Union

from identity import Session

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
DASHBOARD_PATH = "/dashboard"
ASSESSMENT_PATH = "/learning-style-test"


@dataclass(frozen=True)
class AuthState:
    authenticated: bool = False
    loading_auth: bool = False
    roles_loaded: bool = False
    roles: FrozenSet[str] = field(default_factory=frozenset)
    has_assigned_learning_style: bool = False


@dataclass(frozen=True)
class Allow:
    kind: str = "allow"


@dataclass(frozen=True)
class Redirect:
    path: str
    kind: str = "redirect"


@dataclass(frozen=True)
class Pending:
    kind: str = "pending"


Decision = Union[Allow, Redirect, Pending]


def public_guard(state: AuthState) -> Decision:
    if state.loading_auth:
        return Pending()
    if state.authenticated:
        return Redirect(DASHBOARD_PATH)
    return Allow()


def auth_only_guard(state: AuthState) -> Decision:
    if state.loading_auth:
        return Pending()
    if not state.authenticated:
        return Redirect(LOGIN_PATH)
    return Allow()


def dashboard_guard(state: AuthState) -> Decision:
    if state.loading_auth:
        return Pending()
    if not state.authenticated:
        return Redirect(LOGIN_PATH)
    if not state.roles_loaded:
        return Pending()
    if "admin" in state.roles:
        return Allow()
    if not state.has_assigned_learning_style:
        return Redirect(ASSESSMENT_PATH)
    return Allow()


def role_guard(state: AuthState, allowed_roles: Iterable[str], fallback: str = DASHBOARD_PATH) -> Decision:
    if state.loading_auth:
        return Pending()
    if not state.authenticated:
        return Redirect(LOGIN_PATH)
    if not state.roles_loaded:
        return Pending()
    if state.roles & set(allowed_roles):
        return Allow()
    return Redirect(fallback)


def load_auth_state(users, session: Optional[Session]) -> AuthState:
    """Resolve everything the guards need for one session.

    A failed role lookup counts as a loaded, empty role set so an outage
    degrades to the least privileged view instead of hanging in Pending.
    """
    if session is None:
        return AuthState()
    try:
        user = users.get_user_by_id(session.uid)
        roles = frozenset(role.name for role in users.get_user_roles(session.uid)) if user else frozenset()
    except Exception:
        logger.exception("Could not load auth state for %s", session.uid)
        user, roles = None, frozenset()
    return AuthState(
        authenticated=True,
        roles_loaded=True,
        roles=roles,
        has_assigned_learning_style=bool(user and user.learning_style_id),
    )
