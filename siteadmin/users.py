"""User directory: paginated search and validated profile updates."""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .config import AdminSettings
from .database import SQLITE_MAX_INTEGER, Database, DuplicateValueError
from .models import Page, User
from .queries import and_, search_predicate

logger = logging.getLogger("siteadmin.users")

NAME_MAX_LENGTH = 255


class UserDirectoryError(Exception):
    """Base class for user directory failures."""


class UserNotFoundError(UserDirectoryError):
    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class UserValidationError(UserDirectoryError):
    """One or more fields of an update request were rejected."""

    def __init__(self, errors: Dict[str, List[str]]) -> None:
        super().__init__("The given data was invalid.")
        self.errors = errors


class UniquenessConflict(UserValidationError):
    """An email or phone number already belongs to a different user."""

    def __init__(self, errors: Dict[str, List[str]], fields: Iterable[str]) -> None:
        super().__init__(errors)
        self.fields = tuple(fields)


def _taken_message(field: str) -> str:
    return f"The {field} has already been taken."


class UserUpdateRequest(BaseModel):
    """Shape rules for an admin edit of a user account.

    The set of assignable roles is supplied through the validation context
    under ``known_roles``.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., max_length=NAME_MAX_LENGTH)
    email: EmailStr
    phone: Optional[str] = None
    roles: List[str]
    is_banned: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("is_banned", "is_Banned"),
    )

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value:
            raise ValueError("The name field is required.")
        return value

    @field_validator("phone")
    @classmethod
    def _empty_phone_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("roles")
    @classmethod
    def _check_roles(cls, value: List[str], info: ValidationInfo) -> List[str]:
        roles: List[str] = []
        for role in value:
            if role and role not in roles:
                roles.append(role)
        if not roles:
            raise ValueError("The roles field must contain at least one role.")

        known: Optional[FrozenSet[str]] = (info.context or {}).get("known_roles")
        if known is not None:
            unknown = [role for role in roles if role not in known]
            if unknown:
                raise ValueError(f"Unknown role(s): {', '.join(unknown)}.")
        return roles


def _field_errors(exc: ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ("payload",)
        field = str(location[0])
        if field == "is_Banned":
            field = "is_banned"
        if error.get("type") == "missing":
            message = f"The {field} field is required."
        else:
            message = str(error.get("msg", "Invalid value."))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
        messages = errors.setdefault(field, [])
        if message not in messages:
            messages.append(message)
    return errors


class UserDirectoryService:
    """List, search and update user accounts for administrators."""

    def __init__(self, database: Database, settings: AdminSettings | None = None) -> None:
        self._database = database
        self._settings = settings or AdminSettings()

    @property
    def settings(self) -> AdminSettings:
        return self._settings

    def list_users(
        self,
        search: Optional[str] = None,
        *,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> Page[User]:
        """Return one page of users, optionally filtered by ``search``."""

        size = per_page if per_page and per_page > 0 else self._settings.per_page
        current = page if page >= 1 else 1

        predicate = and_(search_predicate(search))
        total = self._database.count_users(predicate)
        offset = (current - 1) * size
        if offset > SQLITE_MAX_INTEGER:
            return Page(items=[], total=total, page=current, per_page=size)

        items = self._database.list_users(predicate, limit=size, offset=offset)
        return Page(items=items, total=total, page=current, per_page=size)

    def update_user(
        self,
        user_id: int,
        payload: Mapping[str, object],
        *,
        actor: str | None = None,
    ) -> User:
        """Validate ``payload`` in full, then write it to the user in one statement."""

        user = self._database.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        validated: Optional[UserUpdateRequest] = None
        errors: Dict[str, List[str]] = {}
        try:
            validated = UserUpdateRequest.model_validate(
                dict(payload),
                context={"known_roles": self._settings.role_set},
            )
        except ValidationError as exc:
            errors = _field_errors(exc)

        conflicts = self._find_conflicts(user, payload, validated, errors)
        for field in conflicts:
            errors.setdefault(field, []).append(_taken_message(field))

        if errors:
            logger.warning(
                "Rejected update for user %s: %s", user.id, ", ".join(sorted(errors))
            )
            if conflicts and set(errors) == set(conflicts):
                raise UniquenessConflict(errors, conflicts)
            raise UserValidationError(errors)

        assert validated is not None
        fields = validated.model_dump(include=validated.model_fields_set)
        if fields.get("is_banned") is None:
            fields.pop("is_banned", None)

        try:
            updated = self._database.update_user(user.id, **fields)
        except DuplicateValueError as exc:
            raise UniquenessConflict(
                {exc.column: [_taken_message(exc.column)]}, [exc.column]
            ) from exc

        if updated is None:
            raise UserNotFoundError(user_id)

        logger.info(
            "User %s updated by %s (fields: %s)",
            updated.id,
            actor or "system",
            ", ".join(sorted(fields)),
        )
        return updated

    def _find_conflicts(
        self,
        user: User,
        payload: Mapping[str, object],
        validated: Optional[UserUpdateRequest],
        errors: Mapping[str, List[str]],
    ) -> List[str]:
        if validated is not None:
            email: object = validated.email
            phone: object = validated.phone
        else:
            email = payload.get("email")
            phone = payload.get("phone")

        conflicts: List[str] = []
        if "email" not in errors and isinstance(email, str):
            if self._database.email_taken(email, exclude_id=user.id):
                conflicts.append("email")
        if "phone" not in errors and isinstance(phone, str):
            if self._database.phone_taken(phone, exclude_id=user.id):
                conflicts.append("phone")
        return conflicts


__all__ = [
    "UniquenessConflict",
    "UserDirectoryError",
    "UserDirectoryService",
    "UserNotFoundError",
    "UserUpdateRequest",
    "UserValidationError",
]
