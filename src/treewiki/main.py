"""TreeWiki FastAPI application."""

import json
import logging
import math
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from treewiki.config import settings
from treewiki.core.auth import AdminAuth
from treewiki.core.cache import DocumentCache
from treewiki.core.errors import (
    ConfigurationError,
    NotFoundError,
    TransientIOError,
    ValidationError,
    WikiError,
)
from treewiki.core.models import (
    MenuCreate,
    MenuUpdate,
    PageCreate,
    PageUpdate,
    WikiDocument,
)
from treewiki.core.navigation import Navigator, search_menus
from treewiki.core.storage import open_store
from treewiki.core.tree import TreeEngine

logger = logging.getLogger(__name__)

_engine: TreeEngine | None = None


def get_engine() -> TreeEngine:
    """Return the process-wide tree engine, building it on first use.

    Raises:
        ConfigurationError: if no store location is configured.
    """
    global _engine
    if _engine is None:
        store = open_store(
            settings.store_url,
            seed_file=settings.seed_file,
            timeout=settings.fetch_timeout,
        )
        _engine = TreeEngine(DocumentCache(store, timeout=settings.fetch_timeout))
    return _engine


def set_engine(engine: TreeEngine | None) -> None:
    """Swap the engine, e.g. to point tests at a private store."""
    global _engine
    _engine = engine


def build_auth() -> AdminAuth:
    return AdminAuth(
        settings.admin_username,
        settings.admin_password,
        ttl=timedelta(hours=settings.auth_ttl_hours),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Report a missing store location at startup instead of on first use."""
    try:
        get_engine()
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc.message)
    yield


# Initialize app
app = FastAPI(
    title=settings.app_title,
    debug=settings.debug,
    lifespan=lifespan,
)


@app.exception_handler(WikiError)
async def wiki_error_handler(request: Request, exc: WikiError) -> JSONResponse:
    """Render wiki errors as ``{"error": message}`` with their status."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies are wiki validation errors, not 422s."""
    problems = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"] if part != "body")
        problems.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return JSONResponse(status_code=400, content={"error": "; ".join(problems)})


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def paginate(items: list[Any], page: int, per_page: int = 10) -> dict[str, Any]:
    """Slice ``items`` for the admin lists; out-of-range pages clamp."""
    per_page = max(per_page, 1)
    total_pages = max(math.ceil(len(items) / per_page), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return {
        "items": items[start : start + per_page],
        "page": page,
        "per_page": per_page,
        "total": len(items),
        "total_pages": total_pages,
    }


# ========== Document gateway ==========


@app.get("/api/get-data")
async def get_data():
    """Return the whole document, bootstrapping it on first access."""
    try:
        document = await get_engine().fetch_document()
    except TransientIOError as exc:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch data", "details": exc.message},
        )
    return document.to_payload()


@app.post("/api/save-data")
async def save_data(request: Request):
    """Replace the whole document."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    try:
        document = WikiDocument.from_payload(payload)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid data structure"})

    try:
        await get_engine().replace_document(document)
    except TransientIOError as exc:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to save data", "details": exc.message},
        )
    return {"success": True, "message": "Data saved successfully"}


@app.get("/api/export")
async def export_data():
    """Download the document as ``wiki-data.json``."""
    document = await get_engine().fetch_document()
    body = json.dumps(document.to_payload(), indent=2, ensure_ascii=False)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="wiki-data.json"'},
    )


@app.post("/api/import")
async def import_data(file: UploadFile = File(...)):
    """Replace the document with an uploaded export."""
    raw = await file.read()
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Invalid data format: {exc}") from exc
    document = WikiDocument.from_payload(payload)
    await get_engine().replace_document(document)
    return {
        "success": True,
        "menus": len(document.menus),
        "pages": len(document.pages),
    }


# ========== Pages ==========


@app.get("/api/pages")
async def list_pages(page: int | None = None, per_page: int = 10):
    pages = [_dump(p) for p in await get_engine().list_pages()]
    if page is None:
        return pages
    return paginate(pages, page, per_page)


@app.get("/api/pages/{page_id}")
async def get_page(page_id: str):
    page = await get_engine().get_page_by_id(page_id)
    if page is None:
        raise NotFoundError(f"Page '{page_id}' not found")
    return _dump(page)


@app.post("/api/pages", status_code=201)
async def create_page(data: PageCreate):
    return _dump(await get_engine().create_page(data))


@app.put("/api/pages/{page_id}")
async def update_page(page_id: str, patch: PageUpdate):
    return _dump(await get_engine().update_page(page_id, patch))


@app.delete("/api/pages/{page_id}")
async def delete_page(page_id: str):
    deleted = await get_engine().delete_page(page_id)
    return {"deleted": deleted}


# ========== Menus ==========


@app.get("/api/menus")
async def list_menus(page: int | None = None, per_page: int = 10):
    menus = [_dump(m) for m in await get_engine().list_menus()]
    if page is None:
        return menus
    return paginate(menus, page, per_page)


@app.post("/api/menus", status_code=201)
async def create_menu(data: MenuCreate):
    return _dump(await get_engine().create_menu(data))


@app.put("/api/menus/{menu_id}")
async def update_menu(menu_id: str, patch: MenuUpdate):
    return _dump(await get_engine().update_menu(menu_id, patch))


@app.delete("/api/menus/{menu_id}")
async def delete_menu(menu_id: str):
    deleted = await get_engine().delete_menu(menu_id)
    return {"deleted": deleted}


# ========== Search & Navigation ==========


@app.get("/api/search")
async def search(q: str = ""):
    """Sidebar search over menu and child titles."""
    results = search_menus(await get_engine().list_menus(), q)
    return {
        "query": q,
        "menus": [_dump(m) for m in results.menus],
        "results": [h.model_dump() for h in results.hits],
    }


@app.get("/api/resolve")
async def resolve(fragment: str = ""):
    """Report which page an initial load with ``fragment`` would show."""
    navigator = Navigator(get_engine(), build_auth())
    await navigator.initial_load(fragment)
    return {
        "page_id": navigator.state.active_page_id,
        "fragment": navigator.fragment,
        "admin_mode": navigator.state.admin_mode,
        "load_error": navigator.load_error,
    }


class AdminLogin(BaseModel):
    username: str
    password: str


@app.post("/api/admin/login")
async def admin_login(credentials: AdminLogin):
    """Check the admin credentials and hand back the login record.

    The server keeps no session; ``session`` is the remembered-login record
    for the client to store. It lapses ``auth_ttl_hours`` after the login.
    """
    auth = build_auth()
    if not auth.login(credentials.username, credentials.password):
        return JSONResponse(
            status_code=401, content={"error": "Invalid username or password"}
        )
    return {
        "authenticated": True,
        "expires_at": auth.expires_at().isoformat(),
        "session": dict(auth.session),
    }
