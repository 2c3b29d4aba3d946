"""Domain models for the site administration backend."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

T = TypeVar("T")


WEB_SETTINGS_FIELDS: Tuple[str, ...] = (
    "name",
    "title_home",
    "title_dashboard",
    "title_exam",
    "footer",
    "contact_telp",
    "contact_email",
    "contact_fax",
    "contact_address",
    "contact_maps",
    "contact_facebook",
    "contact_whatsapp",
    "contact_instagram",
    "contact_twitter",
    "contact_youtube",
    "link_univ",
)


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the admin database."""

    id: int
    name: str
    email: str
    phone: Optional[str]
    roles: Tuple[str, ...]
    is_banned: bool
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "roles": list(self.roles),
            "is_banned": self.is_banned,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class WebSettings:
    """Site-wide display and contact settings.

    Only the attributes listed in :data:`WEB_SETTINGS_FIELDS` may be assigned
    from external input; :meth:`fill` drops anything else.
    """

    name: Optional[str] = None
    title_home: Optional[str] = None
    title_dashboard: Optional[str] = None
    title_exam: Optional[str] = None
    footer: Optional[str] = None
    contact_telp: Optional[str] = None
    contact_email: Optional[str] = None
    contact_fax: Optional[str] = None
    contact_address: Optional[str] = None
    contact_maps: Optional[str] = None
    contact_facebook: Optional[str] = None
    contact_whatsapp: Optional[str] = None
    contact_instagram: Optional[str] = None
    contact_twitter: Optional[str] = None
    contact_youtube: Optional[str] = None
    link_univ: Optional[str] = None

    def fill(self, values: Mapping[str, object]) -> "WebSettings":
        for key in WEB_SETTINGS_FIELDS:
            if key not in values:
                continue
            value = values[key]
            setattr(self, key, None if value is None else str(value))
        return self

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of an offset-paginated result set."""

    items: List[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 10

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1)

    @property
    def from_index(self) -> Optional[int]:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def to_index(self) -> Optional[int]:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + len(self.items)


__all__ = ["Page", "User", "WEB_SETTINGS_FIELDS", "WebSettings"]
