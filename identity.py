"""
Identity provider: accounts, passwords and bearer-token sessions.

Sessions are held by explicit ``AuthContext`` objects instead of module-level
state. The API keeps one context per request; ``IdentityProvider.isolated``
hands out a throwaway context so an admin can provision someone else's
account without touching their own session.
"""

import hashlib
import logging
import os
import secrets
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Optional
from uuid import uuid4

from bson import ObjectId
from pydantic import BaseModel

from database import Store, eq, now_utc
from errors import EmailAlreadyRegistered, InvalidCredentials

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
TOKENS = "tokens"

TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "48"))


def hash_password(password: str) -> str:
    salt = secrets.token_hex(8)
    digest = hashlib.sha256((salt + password).encode()).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        salt, digest = password_hash.split("$")
    except ValueError:
        return False
    return secrets.compare_digest(hashlib.sha256((salt + password).encode()).hexdigest(), digest)


class Session(BaseModel):
    token: str
    uid: str
    email: str
    expires_at: datetime


class IdentityProvider:
    def __init__(self, store: Store, token_ttl_hours: int = TOKEN_TTL_HOURS):
        self.store = store
        self.token_ttl_hours = token_ttl_hours

    def create_account(self, email: str, password: str) -> str:
        email = email.lower()
        if self.store.query(ACCOUNTS, [eq("email", email)]):
            raise EmailAlreadyRegistered("Email already registered")
        uid = str(ObjectId())
        self.store.insert(ACCOUNTS, {
            "email": email,
            "password_hash": hash_password(password),
            "created_at": now_utc(),
        }, uid)
        return uid

    def account_exists(self, uid: str) -> bool:
        return self.store.get_one(ACCOUNTS, uid) is not None

    def sign_in(self, email: str, password: str) -> Session:
        found = self.store.query(ACCOUNTS, [eq("email", email.lower())])
        if not found or not verify_password(password, found[0].get("password_hash", "")):
            raise InvalidCredentials("Invalid credentials")
        account = found[0]
        token = str(uuid4())
        expires_at = now_utc() + timedelta(hours=self.token_ttl_hours)
        self.store.insert(TOKENS, {
            "token": token,
            "user_id": account["id"],
            "created_at": now_utc(),
            "expires_at": expires_at,
        })
        return Session(token=token, uid=account["id"], email=account["email"], expires_at=expires_at)

    def sign_out(self, session: Session) -> None:
        for tok in self.store.query(TOKENS, [eq("token", session.token)]):
            self.store.delete(TOKENS, tok["id"])

    def revoke_all(self, uid: str) -> None:
        for tok in self.store.query(TOKENS, [eq("user_id", uid)]):
            self.store.delete(TOKENS, tok["id"])

    def resolve(self, token: str) -> Optional[Session]:
        found = self.store.query(TOKENS, [eq("token", token)])
        if not found:
            return None
        tok = found[0]
        expires_at = tok["expires_at"]
        if expires_at.tzinfo is None:
            # pymongo hands back naive UTC datetimes
            expires_at = expires_at.replace(tzinfo=now_utc().tzinfo)
        if expires_at < now_utc():
            return None
        account = self.store.get_one(ACCOUNTS, tok["user_id"])
        if not account:
            return None
        return Session(token=token, uid=account["id"], email=account["email"], expires_at=expires_at)

    def context(self, name: str = "primary", session: Optional[Session] = None) -> "AuthContext":
        return AuthContext(self, name, session)

    @contextmanager
    def isolated(self) -> Iterator["AuthContext"]:
        """Secondary context, always signed out and disposed on exit."""
        ctx = AuthContext(self, f"secondary-{uuid4().hex[:8]}")
        try:
            yield ctx
        finally:
            try:
                ctx.sign_out()
            finally:
                ctx.dispose()


SessionListener = Callable[[Optional[Session]], None]


class AuthContext:
    """Holds at most one signed-in session and notifies listeners when it changes."""

    def __init__(self, provider: IdentityProvider, name: str, session: Optional[Session] = None):
        self.provider = provider
        self.name = name
        self.current = session
        self.disposed = False
        self._listeners: List[SessionListener] = []

    def on_session_changed(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.current)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, session: Optional[Session]) -> None:
        self.current = session
        for listener in list(self._listeners):
            listener(session)

    def _check(self):
        if self.disposed:
            raise RuntimeError(f"Auth context {self.name} is disposed")

    def create_account(self, email: str, password: str) -> str:
        """Create an account and sign this context into it."""
        self._check()
        uid = self.provider.create_account(email, password)
        self._set(self.provider.sign_in(email, password))
        return uid

    def sign_in(self, email: str, password: str) -> Session:
        self._check()
        session = self.provider.sign_in(email, password)
        self._set(session)
        return session

    def sign_out(self) -> None:
        if self.current is None:
            return
        self.provider.sign_out(self.current)
        self._set(None)

    def dispose(self) -> None:
        self._listeners.clear()
        self.disposed = True
        logger.debug("Disposed auth context %s", self.name)
