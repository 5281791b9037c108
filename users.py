"""User directory: profiles, roles and the learning-style pointer."""

import logging
from typing import Any, Dict, List, Optional

from database import Store, eq, now_utc
from identity import AuthContext, IdentityProvider
from schemas import ENROLLMENTS, ROLES, USER_PROGRESS, USER_ROLES, USERS, Role, User

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "student"
ADMIN_ROLE = "admin"


class UserDirectory:
    def __init__(self, store: Store, identity: IdentityProvider):
        self.store = store
        self.identity = identity

    # -----------------------------
    # Roles
    # -----------------------------
    def get_user_roles(self, user_id: str) -> List[Role]:
        roles = []
        for link in self.store.query(USER_ROLES, [eq("user_id", user_id)]):
            doc = self.store.get_one(ROLES, link["role_id"])
            # links to a deleted role are dropped
            if doc is not None:
                roles.append(Role.model_validate(doc))
        return roles

    def has_role(self, user_id: str, role_name: str) -> bool:
        try:
            return any(role.name == role_name for role in self.get_user_roles(user_id))
        except Exception:
            logger.exception("Could not read roles of %s", user_id)
            return False

    def is_admin(self, user_id: str) -> bool:
        return self.has_role(user_id, ADMIN_ROLE)

    def assign_role(self, user_id: str, role_name: str) -> Optional[str]:
        """Link a user to the named role; returns None when the role is not defined."""
        found = self.store.query(ROLES, [eq("name", role_name)])
        if not found:
            logger.warning("Role %s is not defined, user %s left without it", role_name, user_id)
            return None
        return self.store.insert(USER_ROLES, {
            "user_id": user_id,
            "role_id": found[0]["id"],
            "assigned_at": now_utc(),
        })

    # -----------------------------
    # Profiles
    # -----------------------------
    def list_users(self) -> List[User]:
        return [User.model_validate(d) for d in self.store.get_all(USERS)]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        doc = self.store.get_one(USERS, user_id)
        return User.model_validate(doc) if doc else None

    def _provision(self, ctx: AuthContext, data: Dict[str, Any]) -> str:
        email = data["email"]
        uid = ctx.create_account(email, data["password"])
        display_name = data.get("display_name") or email.split("@")[0]
        self.store.insert(USERS, {
            "email": email,
            "display_name": display_name,
            "name": data.get("name") or data.get("display_name") or "",
            "learning_style_id": data.get("learning_style_id"),
            "created_at": now_utc(),
            "updated_at": now_utc(),
        }, uid)
        self.assign_role(uid, DEFAULT_ROLE)
        return uid

    def register(self, ctx: AuthContext, data: Dict[str, Any]) -> str:
        """Self sign-up: the caller's own context ends up signed in as the new user."""
        uid = self._provision(ctx, data)
        logger.info("Registered user %s", uid)
        return uid

    def create_user(self, data: Dict[str, Any]) -> str:
        """Provision another person's account.

        Runs in an isolated auth context so the caller's session is never
        replaced; that context is signed out and disposed even when one of the
        writes fails.
        """
        with self.identity.isolated() as ctx:
            uid = self._provision(ctx, data)
        logger.info("Created user %s", uid)
        return uid

    def update_user(self, user_id: str, patch: Dict[str, Any]) -> None:
        fields = {k: v for k, v in patch.items() if k not in ("password", "email")}
        fields["updated_at"] = now_utc()
        self.store.update(USERS, user_id, fields)

    def set_learning_style(self, user_id: str, learning_style_id: str) -> None:
        self.store.update(USERS, user_id, {
            "learning_style_id": learning_style_id,
            "learning_style_assigned_at": now_utc(),
        })

    def delete_user(self, user_id: str) -> None:
        """Remove a user and every row that references them.

        The identity account is kept but its open sessions are revoked. Steps
        run one after the other with no transaction, so a failure part way
        leaves the remaining rows behind.
        """
        for collection in (ENROLLMENTS, USER_PROGRESS, USER_ROLES):
            for row in self.store.query(collection, [eq("user_id", user_id)]):
                self.store.delete(collection, row["id"])
        self.store.delete(USERS, user_id)
        self.identity.revoke_all(user_id)
        logger.info("Deleted user %s", user_id)
