import json
import re
import sys
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from siteadmin.config import AdminSettings
from siteadmin.database import Database
from siteadmin.management import UPDATE_SUCCESS_MESSAGE, create_app
from siteadmin.security import TokenAuth


TOKEN = "tests-admin-token"


def _build_app(tmp_path: Path, *, per_page: int = 10):
    database = Database(tmp_path / "siteadmin.sqlite3")
    database.initialize()

    app = create_app(
        database=database,
        settings=AdminSettings(known_roles=("admin", "user"), per_page=per_page),
        auth=TokenAuth([f"tester:{TOKEN}"]),
        session_secret="not-so-secret",
    )
    return app, database


def _auth_header() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}


def _valid_payload(**overrides):
    payload = {"name": "Jane Doe", "email": "jane@example.com", "roles": ["user"]}
    payload.update(overrides)
    return payload


def test_health_does_not_require_token(tmp_path):
    app, _ = _build_app(tmp_path)

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_admin_routes_require_valid_token(tmp_path):
    app, _ = _build_app(tmp_path)

    with TestClient(app) as client:
        missing = client.get("/admin/users/search")
        wrong = client.get(
            "/admin/users/search", headers={"Authorization": "Bearer nope"}
        )

    assert missing.status_code == 401
    assert wrong.status_code == 403


def test_search_returns_paginated_envelope(tmp_path):
    app, database = _build_app(tmp_path)
    for i in range(15):
        database.create_user(f"Student {i}", f"student{i}@example.com")
    database.create_user("Lecturer", "lecturer@campus.example.com", phone="021-555")

    with TestClient(app) as client:
        response = client.get("/admin/users/search", params={"page": 2}, headers=_auth_header())

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 16
    assert payload["current_page"] == 2
    assert payload["per_page"] == 10
    assert payload["last_page"] == 2
    assert payload["from"] == 11
    assert payload["to"] == 16
    assert len(payload["data"]) == 6
    assert payload["next_page_url"] is None
    assert payload["prev_page_url"].endswith("page=1")
    assert payload["path"] == "http://testserver/admin/users/search"


def test_search_filters_by_term(tmp_path):
    app, database = _build_app(tmp_path)
    database.create_user("Student", "student@example.com")
    lecturer = database.create_user("Lecturer", "lecturer@example.com", phone="021-555")

    with TestClient(app) as client:
        response = client.get(
            "/admin/users/search",
            params={"search": "021"},
            headers=_auth_header(),
        )

    payload = response.json()
    assert [user["id"] for user in payload["data"]] == [lecturer.id]
    assert payload["total"] == 1
    assert "search=021" in payload["first_page_url"]


def test_invalid_page_falls_back_to_first_page(tmp_path):
    app, database = _build_app(tmp_path)
    database.create_user("Only", "only@example.com")

    with TestClient(app) as client:
        response = client.get(
            "/admin/users/search", params={"page": "abc"}, headers=_auth_header()
        )

    assert response.status_code == 200
    assert response.json()["current_page"] == 1


def test_page_beyond_integer_range_is_empty(tmp_path):
    app, database = _build_app(tmp_path)
    database.create_user("Only", "only@example.com")

    with TestClient(app) as client:
        response = client.get(
            "/admin/users/search",
            params={"page": "99999999999999999999"},
            headers=_auth_header(),
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"] == []
    assert payload["total"] == 1
    assert payload["next_page_url"] is None


def test_users_page_embeds_first_page(tmp_path):
    app, database = _build_app(tmp_path)
    for i in range(12):
        database.create_user(f"User {i}", f"user{i}@example.com")

    with TestClient(app) as client:
        response = client.get("/admin/users", headers=_auth_header())

    assert response.status_code == 200
    match = re.search(
        r"<script id=\"users-data\" type=\"application/json\">(.*?)</script>",
        response.text,
        re.DOTALL,
    )
    assert match is not None
    embedded = json.loads(match.group(1))
    assert embedded["per_page"] == 10
    assert embedded["total"] == 12
    assert embedded["current_page"] == 1
    assert len(embedded["data"]) == 10


def test_users_page_size_ignores_configured_page_size(tmp_path):
    app, database = _build_app(tmp_path, per_page=25)
    for i in range(30):
        database.create_user(f"User {i}", f"user{i}@example.com")

    with TestClient(app) as client:
        view = client.get("/admin/users", headers=_auth_header())
        search = client.get("/admin/users/search", headers=_auth_header())

    match = re.search(
        r"<script id=\"users-data\" type=\"application/json\">(.*?)</script>",
        view.text,
        re.DOTALL,
    )
    assert match is not None
    embedded = json.loads(match.group(1))
    assert embedded["per_page"] == 10
    assert len(embedded["data"]) == 10
    assert search.json()["per_page"] == 25


def test_update_redirects_back_with_flash_message(tmp_path):
    app, database = _build_app(tmp_path)
    user = database.create_user("Jane", "old@example.com", roles=["user"])

    with TestClient(app) as client:
        response = client.put(
            f"/admin/users/{user.id}",
            json=_valid_payload(roles=["admin"], is_banned=True),
            headers={**_auth_header(), "Referer": "http://testserver/admin/users?page=1"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "http://testserver/admin/users?page=1"

        follow = client.get("/admin/users", headers=_auth_header())
        assert UPDATE_SUCCESS_MESSAGE in follow.text

        again = client.get("/admin/users", headers=_auth_header())
        assert UPDATE_SUCCESS_MESSAGE not in again.text

    refreshed = database.get_user(user.id)
    assert refreshed.email == "jane@example.com"
    assert refreshed.roles == ("admin",)
    assert refreshed.is_banned is True


def test_update_ignores_foreign_referer(tmp_path):
    app, database = _build_app(tmp_path)
    user = database.create_user("Jane", "jane@example.com", roles=["user"])

    with TestClient(app) as client:
        response = client.patch(
            f"/admin/users/{user.id}",
            json=_valid_payload(),
            headers={**_auth_header(), "Referer": "https://evil.example.net/"},
            follow_redirects=False,
        )

    assert response.status_code == 303
    assert response.headers["location"] == "http://testserver/admin/users"


def test_update_accepts_form_bodies(tmp_path):
    app, database = _build_app(tmp_path)
    user = database.create_user("Jane", "jane@example.com", roles=["user"])

    with TestClient(app) as client:
        response = client.put(
            f"/admin/users/{user.id}",
            data={
                "name": "Jane Form",
                "email": "jane@example.com",
                "phone": "",
                "roles[]": ["admin", "user"],
                "is_banned": "1",
            },
            headers=_auth_header(),
            follow_redirects=False,
        )

    assert response.status_code == 303
    refreshed = database.get_user(user.id)
    assert refreshed.name == "Jane Form"
    assert refreshed.roles == ("admin", "user")
    assert refreshed.is_banned is True


def test_update_validation_errors_return_422(tmp_path):
    app, database = _build_app(tmp_path)
    database.create_user("Owner", "taken@example.com")
    user = database.create_user("Jane", "jane@example.com", roles=["user"])

    with TestClient(app) as client:
        response = client.put(
            f"/admin/users/{user.id}",
            json=_valid_payload(name="", email="taken@example.com", roles=["wizard"]),
            headers=_auth_header(),
            follow_redirects=False,
        )

    assert response.status_code == 422
    payload = response.json()
    assert set(payload["errors"]) == {"name", "email", "roles"}
    assert payload["errors"]["email"] == ["The email has already been taken."]
    assert database.get_user(user.id) == user


def test_update_unknown_user_returns_404(tmp_path):
    app, _ = _build_app(tmp_path)

    with TestClient(app) as client:
        missing = client.put("/admin/users/999", json=_valid_payload(), headers=_auth_header())
        malformed = client.put("/admin/users/abc", json=_valid_payload(), headers=_auth_header())
        oversized = client.put(
            "/admin/users/99999999999999999999", json=_valid_payload(), headers=_auth_header()
        )

    assert missing.status_code == 404
    assert missing.json() == {"detail": "User not found"}
    assert malformed.status_code == 404
    assert oversized.status_code == 404
    assert oversized.json() == {"detail": "User not found"}


def test_malformed_json_body_is_rejected(tmp_path):
    app, database = _build_app(tmp_path)
    user = database.create_user("Jane", "jane@example.com")

    with TestClient(app) as client:
        response = client.put(
            f"/admin/users/{user.id}",
            content="{not json",
            headers={**_auth_header(), "Content-Type": "application/json"},
        )

    assert response.status_code == 400
