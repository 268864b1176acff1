# download-link-service/main.py
import logging
from contextlib import asynccontextmanager
from typing import List

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

import database
from auth import (
    authenticate,
    ensure_default_admin,
    pwd_context,
    require_admin,
    require_auth,
    SESSION_HEADER,
)
from config import get_settings
from downloads import get_http_client, serve_download, wait_for_bookkeeping
from exceptions import LinkServiceError
from models import Link, User
from probe import probe_url
from schemas import (
    CreatedLinkOut,
    CreatedUserOut,
    LinkChanges,
    LinkCreate,
    LinkOut,
    LinkUpdate,
    LoginOut,
    LoginRequest,
    MessageOut,
    PasswordChange,
    RefreshedLinkOut,
    UserCreate,
    UserOut,
    UserUpdate,
)
from sessions import SessionStore, build_session_store, get_session_store

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)

    mongo_client, _ = await database.connect_to_mongo(settings)
    app.state.settings = settings
    app.state.session_store = build_session_store(settings)
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.download_timeout_seconds)
    )
    await ensure_default_admin(settings)
    logger.info("Download Link Service started")
    yield
    await wait_for_bookkeeping()
    await app.state.http_client.aclose()
    app.state.session_store.close()
    await database.close_mongo_connection(mongo_client)


app = FastAPI(
    title="Download Link Service",
    description="Expiring, download-limited tracking links that proxy third-party files.",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error rendering ---


@app.exception_handler(LinkServiceError)
async def link_service_error_handler(request: Request, exc: LinkServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        message = error["msg"].removeprefix("Value error, ")
        messages.append(f"{field}: {message}" if field else message)
    logger.info("Rejected request to %s: %s", request.url.path, messages)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"error": "; ".join(messages)}
    )


def _link_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found")


def _user_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@app.get("/health", tags=["Health Check"])
async def health_check():
    """
    Health check endpoint to verify service status.
    """
    return {"status": "ok", "message": "Download Link Service is running!"}


# --- Public download endpoint ---


@app.get("/download/{link_id}", tags=["Download"], name="download_link")
async def download_link(
    link_id: str, http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Serves the file behind a tracking link. Deliberately unauthenticated.
    """
    return await serve_download(link_id, http_client)


# --- Link management ---


@app.post("/api/links", tags=["Links"], response_model=CreatedLinkOut)
async def create_link(
    payload: LinkCreate, request: Request, user_id: str = Depends(require_auth)
):
    link = Link.new(
        original_url=payload.original_url,
        title=payload.title,
        max_downloads=payload.max_downloads,
        expiration_hours=payload.expiration_hours,
    )
    await database.create_link(link)
    logger.info("User %s created link %s", user_id, link.id)
    tracking_url = str(request.url_for("download_link", link_id=link.id))
    return CreatedLinkOut.from_document(link, tracking_url=tracking_url)


@app.get("/api/links", tags=["Links"], response_model=List[LinkOut])
async def list_links(user_id: str = Depends(require_auth)):
    return [LinkOut.from_document(link) for link in await database.get_all_links()]


@app.get("/api/links/{link_id}", tags=["Links"], response_model=LinkOut)
async def get_link(link_id: str, user_id: str = Depends(require_auth)):
    link = await database.get_link(link_id)
    if link is None:
        raise _link_not_found()
    return LinkOut.from_document(link)


@app.put("/api/links/{link_id}", tags=["Links"], response_model=LinkOut)
async def update_link(
    link_id: str, payload: LinkUpdate, user_id: str = Depends(require_auth)
):
    changes = LinkChanges(**payload.model_dump(exclude_unset=True))
    link = await database.update_link(link_id, changes)
    if link is None:
        raise _link_not_found()
    return LinkOut.from_document(link)


@app.delete("/api/links/{link_id}", tags=["Links"], response_model=MessageOut)
async def delete_link(link_id: str, user_id: str = Depends(require_auth)):
    if not await database.delete_link(link_id):
        raise _link_not_found()
    logger.info("User %s deleted link %s", user_id, link_id)
    return MessageOut(message="Link deleted successfully")


@app.post("/api/links/{link_id}/reset", tags=["Links"], response_model=LinkOut)
async def reset_link(link_id: str, user_id: str = Depends(require_auth)):
    link = await database.update_link(
        link_id, LinkChanges(current_downloads=0, is_active=True)
    )
    if link is None:
        raise _link_not_found()
    return LinkOut.from_document(link)


@app.post("/api/links/{link_id}/deactivate", tags=["Links"], response_model=LinkOut)
async def deactivate_link(link_id: str, user_id: str = Depends(require_auth)):
    link = await database.update_link(link_id, LinkChanges(is_active=False))
    if link is None:
        raise _link_not_found()
    return LinkOut.from_document(link)


@app.post("/api/links/{link_id}/check", tags=["Links"], response_model=LinkOut)
async def check_link(
    link_id: str,
    request: Request,
    http_client: httpx.AsyncClient = Depends(get_http_client),
    user_id: str = Depends(require_auth),
):
    link = await database.get_link(link_id)
    if link is None:
        raise _link_not_found()
    result = await probe_url(
        http_client, link.original_url, timeout=_probe_timeout(request)
    )
    updated = await database.update_link(link_id, result.as_changes())
    if updated is None:
        raise _link_not_found()
    return LinkOut.from_document(updated)


@app.post("/api/links/{link_id}/refresh", tags=["Links"], response_model=RefreshedLinkOut)
async def refresh_link(
    link_id: str,
    request: Request,
    http_client: httpx.AsyncClient = Depends(get_http_client),
    user_id: str = Depends(require_auth),
):
    link = await database.get_link(link_id)
    if link is None:
        raise _link_not_found()
    result = await probe_url(
        http_client, link.original_url, timeout=_probe_timeout(request)
    )
    changes = result.as_changes()
    if result.is_valid:
        # Never revive a link that is expired or out of downloads.
        if not link.is_expired() and not link.is_limit_reached():
            changes.is_active = True
        message = "Link is valid and has been refreshed"
    else:
        message = "Link is invalid and has been marked as such"
    updated = await database.update_link(link_id, changes)
    if updated is None:
        raise _link_not_found()
    return RefreshedLinkOut.from_document(updated, message=message)


def _probe_timeout(request: Request) -> float:
    settings = getattr(request.app.state, "settings", None)
    return settings.probe_timeout_seconds if settings else 10.0


# --- Sessions ---


@app.post("/api/login", tags=["Auth"], response_model=LoginOut)
async def login(
    payload: LoginRequest, sessions: SessionStore = Depends(get_session_store)
):
    if not payload.username or not payload.password:
        raise _bad_request("Username and password are required")
    user = await authenticate(payload.username, payload.password)
    if user is None:
        logger.info("Failed login attempt for user %r", payload.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    session_id = sessions.create(str(user.id))
    logger.info("Login successful for user %r", user.username)
    return LoginOut(session_id=session_id, username=user.username)


@app.post("/api/logout", tags=["Auth"])
async def logout(request: Request, sessions: SessionStore = Depends(get_session_store)):
    token = request.headers.get(SESSION_HEADER)
    if token:
        sessions.delete(token)
    return {"success": True}


async def _current_user(user_id: str) -> User:
    user = await database.get_user_by_id(user_id)
    if user is None:
        raise _user_not_found()
    return user


@app.get("/api/verify-session", tags=["Auth"])
async def verify_session(user_id: str = Depends(require_auth)):
    user = await _current_user(user_id)
    return {"valid": True, "role": user.role}


@app.get("/api/user-role", tags=["Auth"])
async def user_role(user_id: str = Depends(require_auth)):
    user = await _current_user(user_id)
    return {"role": user.role}


# --- Users ---


@app.post(
    "/api/users",
    tags=["Users"],
    response_model=CreatedUserOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(payload: UserCreate, admin: User = Depends(require_admin)):
    if not payload.username or not payload.password:
        raise _bad_request("Username and password are required")
    if await database.get_user_by_username(payload.username) is not None:
        raise _bad_request("Username already exists")
    role = "admin" if payload.role == "admin" else "user"
    user = await database.create_user(
        payload.username, pwd_context.hash(payload.password), role
    )
    logger.info("Admin %r created user %r (%s)", admin.username, user.username, role)
    return CreatedUserOut(id=str(user.id), username=user.username, role=role)


@app.get("/api/users", tags=["Users"], response_model=List[UserOut])
async def list_users(user_id: str = Depends(require_auth)):
    return [UserOut.from_document(user) for user in await database.get_all_users()]


@app.delete("/api/users/{target_id}", tags=["Users"], response_model=MessageOut)
async def delete_user(target_id: str, user_id: str = Depends(require_auth)):
    if await database.count_users() <= 1:
        raise _bad_request("Cannot delete the last user")
    if target_id == user_id:
        raise _bad_request("Cannot delete your own account")
    if not await database.delete_user(target_id):
        raise _user_not_found()
    return MessageOut(message="User deleted successfully")


@app.put("/api/users/{target_id}/password", tags=["Users"])
async def change_password(
    target_id: str, payload: PasswordChange, user_id: str = Depends(require_auth)
):
    if not payload.current_password or not payload.new_password:
        raise _bad_request("Current password and new password are required")
    user = await database.get_user_by_id(target_id)
    if user is None:
        raise _user_not_found()
    if not pwd_context.verify(payload.current_password, user.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Current password is incorrect",
        )
    await database.update_user_password(user, pwd_context.hash(payload.new_password))
    return {"success": True, "message": "Password updated successfully"}


@app.put("/api/users/{target_id}", tags=["Users"])
async def update_user(
    target_id: str, payload: UserUpdate, user_id: str = Depends(require_auth)
):
    if not payload.username:
        raise _bad_request("Username is required")
    existing = await database.get_user_by_username(payload.username)
    if existing is not None and str(existing.id) != target_id:
        raise _bad_request("Username already exists")
    user = await database.get_user_by_id(target_id)
    if user is None:
        raise _user_not_found()
    await database.update_username(user, payload.username)
    return {"success": True, "message": "User updated successfully"}
