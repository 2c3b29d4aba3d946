"""Configuration management for the site administration service."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import yaml

DEFAULT_ROLES: Tuple[str, ...] = ("admin", "user")
DEFAULT_PER_PAGE = 10


@dataclass(frozen=True)
class AdminSettings:
    """Tunables for the user directory."""

    known_roles: Tuple[str, ...] = DEFAULT_ROLES
    per_page: int = DEFAULT_PER_PAGE

    @property
    def role_set(self) -> FrozenSet[str]:
        return frozenset(self.known_roles)

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "AdminSettings":
        """Create :class:`AdminSettings` from raw dictionary data."""

        raw_roles = data.get("roles", list(DEFAULT_ROLES))
        if not isinstance(raw_roles, list) or not all(isinstance(role, str) for role in raw_roles):
            raise ValueError("'roles' must be a list of role identifiers")
        roles = tuple(role.strip() for role in raw_roles if role.strip())
        if not roles:
            raise ValueError("At least one role identifier must be configured")

        try:
            per_page = int(data.get("per_page", DEFAULT_PER_PAGE))  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError("'per_page' must be an integer") from exc
        if per_page < 1:
            raise ValueError("'per_page' must be a positive integer")

        return AdminSettings(known_roles=roles, per_page=per_page)


def load_admin_settings(config_path: Path) -> AdminSettings:
    """Load settings from a YAML file, falling back to defaults when it is absent."""

    if not config_path.exists():
        return AdminSettings()

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return AdminSettings.from_dict(raw)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "siteadmin.yaml").resolve(strict=False)
    return candidate


__all__ = ["AdminSettings", "DEFAULT_PER_PAGE", "DEFAULT_ROLES", "load_admin_settings", "resolve_config_path"]
