from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from siteadmin.management import create_app  # noqa: E402
from siteadmin.security import TOKENS_ENV_VAR, TokenAuth, parse_token_entries  # noqa: E402


def test_parse_token_entries_assigns_labels() -> None:
    tokens = parse_token_entries(["ops:abc123", " plain-token ", "", ":orphan"])

    assert tokens == {"abc123": "ops", "plain-token": "admin", "orphan": "admin"}


def test_token_auth_requires_at_least_one_token() -> None:
    with pytest.raises(ValueError):
        TokenAuth([" ", ""])


def test_from_env_reads_comma_separated_tokens(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TOKENS_ENV_VAR, "alice:one, two")

    auth = TokenAuth.from_env()

    assert auth._tokens == {"one": "alice", "two": "admin"}


def test_create_app_requires_session_secret(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from siteadmin.database import Database

    monkeypatch.delenv("SITEADMIN_SESSION_SECRET", raising=False)
    database = Database(tmp_path / "siteadmin.sqlite3")
    database.initialize()

    with pytest.raises(RuntimeError):
        create_app(database=database, auth=TokenAuth(["token"]))
