"""Browser and JSON entry points for administering users and site settings."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.datastructures import URL
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import AdminSettings, load_admin_settings, resolve_config_path
from .database import SQLITE_MAX_INTEGER, Database, resolve_database_path
from .models import WEB_SETTINGS_FIELDS, Page, User
from .security import TokenAuth
from .users import UserDirectoryService, UserNotFoundError, UserValidationError

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

UPDATE_SUCCESS_MESSAGE = "User updated successfully"

# The initial users page is always rendered with this many rows.
USERS_PAGE_SIZE = 10

logger = logging.getLogger("siteadmin.management")


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("SITEADMIN_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def _parse_page(raw: Optional[str]) -> int:
    try:
        page = int(raw) if raw is not None else 1
    except ValueError:
        return 1
    return page if page >= 1 else 1


def page_to_envelope(page: Page[User], base_url: URL) -> Dict[str, object]:
    """Serialise a page of users into the offset-pagination envelope."""

    last_page = page.last_page

    def page_url(number: int) -> str:
        return str(base_url.include_query_params(page=number))

    return {
        "data": [user.to_dict() for user in page.items],
        "total": page.total,
        "current_page": page.page,
        "per_page": page.per_page,
        "last_page": last_page,
        "from": page.from_index,
        "to": page.to_index,
        "path": str(base_url.replace(query="")),
        "first_page_url": page_url(1),
        "last_page_url": page_url(last_page),
        "next_page_url": page_url(page.page + 1) if page.page < last_page else None,
        "prev_page_url": page_url(page.page - 1) if page.page > 1 else None,
    }


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[AdminSettings] = None,
    auth: Optional[TokenAuth] = None,
    session_secret: Optional[str] = None,
) -> FastAPI:
    """Create the admin web application."""

    if database is None:
        db_path = resolve_database_path(os.getenv("SITEADMIN_DB_PATH"))
        database = Database(db_path)
        database.initialize()

    if settings is None:
        settings = load_admin_settings(resolve_config_path(os.getenv("SITEADMIN_CONFIG")))

    if auth is None:
        auth = TokenAuth.from_env()

    if session_secret is None:
        session_secret = os.getenv("SITEADMIN_SESSION_SECRET")
    if not session_secret:
        raise RuntimeError("SITEADMIN_SESSION_SECRET must be configured to use the admin interface")

    directory = UserDirectoryService(database, settings)

    app = FastAPI(
        title="Site Administration",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())

    secure_cookie_setting = os.getenv("SITEADMIN_SESSION_SECURE")
    if secure_cookie_setting is None:
        secure_cookie = False
    else:
        secure_cookie = secure_cookie_setting.strip().lower() not in {
            "0",
            "false",
            "no",
        }

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="siteadmin_session",
        https_only=secure_cookie,
        same_site="lax",
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _redirect_back(request: Request) -> RedirectResponse:
        target = request.headers.get("referer")
        if not target or not target.startswith(str(request.base_url)):
            target = str(request.url_for("users_view"))
        return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)

    def _parse_user_id(raw: str) -> int:
        try:
            user_id = int(raw)
        except ValueError as exc:
            raise UserNotFoundError(raw) from exc
        if not -SQLITE_MAX_INTEGER - 1 <= user_id <= SQLITE_MAX_INTEGER:
            raise UserNotFoundError(raw)
        return user_id

    async def _read_payload(request: Request) -> Dict[str, object]:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            try:
                body = await request.json()
            except ValueError as exc:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Request body is not valid JSON",
                ) from exc
            if not isinstance(body, dict):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Request body must be a JSON object",
                )
            return body

        form = await request.form()
        payload: Dict[str, object] = {key: form.get(key) for key in form.keys()}
        roles = form.getlist("roles") or form.getlist("roles[]")
        if roles:
            payload["roles"] = [str(role) for role in roles]
        payload.pop("roles[]", None)
        return payload

    def get_directory() -> UserDirectoryService:
        return directory

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    admin_router = APIRouter(prefix="/admin", dependencies=[Depends(auth)])

    @admin_router.get("/users", response_class=HTMLResponse, name="users_view")
    async def users_view(request: Request, page: Optional[str] = None):
        users_page = directory.list_users(page=_parse_page(page), per_page=USERS_PAGE_SIZE)
        envelope = page_to_envelope(users_page, request.url_for("search_users"))
        return templates.TemplateResponse(
            request,
            "users.html",
            {
                "users": envelope,
                "messages": _consume_flash(request),
            },
        )

    @admin_router.get("/users/search", name="search_users")
    async def search_users(
        request: Request,
        search: Optional[str] = None,
        page: Optional[str] = None,
        service: UserDirectoryService = Depends(get_directory),
    ) -> Dict[str, object]:
        users_page = service.list_users(search, page=_parse_page(page))
        return page_to_envelope(users_page, request.url)

    @admin_router.api_route("/users/{user_id}", methods=["PUT", "PATCH"], name="update_user")
    async def update_user(
        request: Request,
        user_id: str,
        actor: str = Depends(auth),
        service: UserDirectoryService = Depends(get_directory),
    ) -> RedirectResponse:
        numeric_id = _parse_user_id(user_id)
        payload = await _read_payload(request)
        service.update_user(numeric_id, payload, actor=actor)
        _flash(request, UPDATE_SUCCESS_MESSAGE, category="success")
        return _redirect_back(request)

    @admin_router.get("/settings", name="read_settings")
    async def read_settings() -> Dict[str, Optional[str]]:
        return database.get_web_settings().to_dict()

    @admin_router.put("/settings", name="update_settings")
    async def update_settings(request: Request, actor: str = Depends(auth)):
        payload = await _read_payload(request)
        errors = {
            key: [f"The {key} field must be a string."]
            for key in WEB_SETTINGS_FIELDS
            if key in payload and payload[key] is not None and not isinstance(payload[key], str)
        }
        if errors:
            return JSONResponse(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                content={"message": "The given data was invalid.", "errors": errors},
            )

        record = database.get_web_settings().fill(payload)
        saved = database.save_web_settings(record)
        logger.info("Site settings updated by %s", actor)
        return saved.to_dict()

    app.include_router(admin_router)

    @app.exception_handler(UserNotFoundError)
    async def handle_missing_user(_: Request, exc: UserNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "User not found"})

    @app.exception_handler(UserValidationError)
    async def handle_invalid_user(_: Request, exc: UserValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"message": str(exc), "errors": exc.errors},
        )

    return app


__all__ = ["UPDATE_SUCCESS_MESSAGE", "create_app", "page_to_envelope"]
