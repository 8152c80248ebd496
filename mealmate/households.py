"""Households and the users who belong to them."""

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any

from mealmate.errors import AppError, ErrorCode
from mealmate.store import JsonStore

logger = logging.getLogger(__name__)

HOUSEHOLDS = "households"
USERS = "users"


@dataclass
class Household:
    id: str
    household_name: str
    created_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Household":
        return cls(id=data["id"], household_name=data["household_name"], created_at=data.get("created_at"))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class User:
    id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    household_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


class HouseholdService:
    def __init__(self, store: JsonStore):
        self.store = store

    def get_user(self, user_id: str) -> User:
        row = self.store.get(USERS, user_id)
        if row is None:
            raise AppError.not_found("User", ErrorCode.USER_NOT_FOUND)
        return User.from_dict(row)

    def upsert_user(self, user_id: str, email: str, full_name: str | None = None,
                    avatar_url: str | None = None) -> User:
        """Create the user profile or update it in place. Emails are unique."""
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise AppError.validation("A valid email is required")

        taken = self.store.select(USERS, lambda u: u.get("email") == email and u["id"] != user_id)
        if taken:
            raise AppError("Email is already in use", ErrorCode.DUPLICATE_ENTRY, 409)

        changes = {"email": email}
        if full_name is not None:
            changes["full_name"] = full_name
        if avatar_url is not None:
            changes["avatar_url"] = avatar_url

        row = self.store.update(USERS, user_id, changes)
        if row is None:
            row = self.store.insert(USERS, {"id": user_id, "household_id": None, "full_name": None,
                                            "avatar_url": None, **changes})
            logger.info("User created", extra={"user_id": user_id})
        return User.from_dict(row)

    def create_household(self, household_name: str, creator_id: str) -> Household:
        """Create a household and make its creator the first member."""
        household_name = (household_name or "").strip()
        if not household_name:
            raise AppError.validation("household_name is required")
        self.get_user(creator_id)

        with self.store.transaction():
            row = self.store.insert(HOUSEHOLDS, {"household_name": household_name})
            self.store.update(USERS, creator_id, {"household_id": row["id"]})

        logger.info("Household created", extra={"household_id": row["id"], "user_id": creator_id})
        return Household.from_dict(row)

    def _household_row(self, household_id: str) -> dict:
        row = self.store.get(HOUSEHOLDS, household_id)
        if row is None:
            raise AppError.not_found("Household")
        return row

    def is_member(self, user_id: str, household_id: str | None) -> bool:
        if not household_id:
            return False
        user = self.store.get(USERS, user_id)
        return user is not None and user.get("household_id") == household_id

    def require_member(self, user_id: str, household_id: str) -> None:
        self._household_row(household_id)
        if not self.is_member(user_id, household_id):
            raise AppError.authorization("You are not a member of this household")

    def get_household(self, household_id: str, user_id: str) -> Household:
        self.require_member(user_id, household_id)
        return Household.from_dict(self._household_row(household_id))

    def list_members(self, household_id: str, user_id: str) -> list[User]:
        self.require_member(user_id, household_id)
        rows = self.store.select(USERS, lambda u: u.get("household_id") == household_id)
        return sorted((User.from_dict(r) for r in rows), key=lambda u: (u.full_name or u.email).lower())

    def join_household(self, user_id: str, household_id: str) -> User:
        self.get_user(user_id)
        self._household_row(household_id)
        row = self.store.update(USERS, user_id, {"household_id": household_id})
        logger.info("User joined household", extra={"user_id": user_id, "household_id": household_id})
        return User.from_dict(row)

    def leave_household(self, user_id: str) -> User:
        self.get_user(user_id)
        row = self.store.update(USERS, user_id, {"household_id": None})
        logger.info("User left household", extra={"user_id": user_id})
        return User.from_dict(row)
