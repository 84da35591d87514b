"""JSON-over-HTTP adapter for the user directory."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, Mapping

import anyio
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .directory import SearchResult, UserDirectory, UserPage
from .errors import DirectoryError, ErrorKind, MalformedRequestError
from .models import User, format_timestamp

logger = logging.getLogger("userdirectory.rest")

STATUS_BY_KIND: Mapping[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MALFORMED_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.STORE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def user_to_json(user: User) -> Dict[str, Any]:
    """Render a user in the document shape REST clients consume."""

    return {
        "_id": user.id,
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "age": user.age,
        "role": user.role,
        "createdAt": format_timestamp(user.created_at),
        "updatedAt": format_timestamp(user.updated_at),
    }


def page_to_json(page: UserPage) -> Dict[str, Any]:
    return {
        "users": [user_to_json(user) for user in page.users],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
    }


def search_to_json(result: SearchResult) -> Dict[str, Any]:
    return {"users": [user_to_json(user) for user in result.users], "total": result.total}


def error_response(exc: DirectoryError) -> JSONResponse:
    if exc.kind is ErrorKind.NOT_FOUND:
        message = "Not found"
    else:
        message = exc.message
    return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content={"error": message})


async def _read_json_object(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRequestError(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedRequestError("Request body must be a JSON object")
    return payload


def build_users_router(directory: UserDirectory) -> APIRouter:
    """Return the ``/users`` routes bound to ``directory``."""

    router = APIRouter()

    @router.get("/users")
    def list_users(request: Request) -> Dict[str, Any]:
        params = request.query_params
        page = directory.list_users(params.get("page"), params.get("limit"))
        return page_to_json(page)

    @router.get("/users/search")
    def search_users(q: str = "") -> Dict[str, Any]:
        return search_to_json(directory.search_users(q))

    @router.get("/users/{user_id}")
    def get_user(user_id: str) -> Dict[str, Any]:
        return user_to_json(directory.get_user(user_id))

    @router.post("/users", status_code=status.HTTP_201_CREATED)
    async def create_user(request: Request) -> Dict[str, Any]:
        payload = await _read_json_object(request)
        user = await anyio.to_thread.run_sync(partial(directory.create_user, payload))
        return user_to_json(user)

    @router.put("/users/{user_id}")
    async def update_user(user_id: str, request: Request) -> Dict[str, Any]:
        payload = await _read_json_object(request)
        user = await anyio.to_thread.run_sync(partial(directory.update_user, user_id, payload))
        return user_to_json(user)

    @router.delete("/users/{user_id}")
    def delete_user(user_id: str) -> Dict[str, Any]:
        deleted = directory.delete_user(user_id)
        return {"success": True, "message": f"User {deleted.name} deleted"}

    return router


def register_health_route(app: FastAPI, directory: UserDirectory, settings: Settings) -> None:
    @app.get("/health")
    def health() -> Dict[str, str]:
        return {
            "status": "OK",
            "service": settings.service_name,
            "timestamp": format_timestamp(datetime.now(timezone.utc)),
            "mongodb": "connected" if directory.store_connected() else "disconnected",
        }


def create_rest_app(directory: UserDirectory, settings: Settings) -> FastAPI:
    """Instantiate the FastAPI application serving the JSON API and health probe."""

    app = FastAPI(
        title=settings.service_name,
        version="1.0.0",
        description="JSON API for the user directory.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(DirectoryError)
    async def handle_directory_error(request: Request, exc: DirectoryError) -> JSONResponse:
        if exc.kind is ErrorKind.STORE_FAILURE:
            logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc.message)
        return error_response(exc)

    app.state.directory = directory
    app.include_router(build_users_router(directory), prefix=settings.api_prefix)
    register_health_route(app, directory, settings)
    return app


__all__ = [
    "STATUS_BY_KIND",
    "create_rest_app",
    "error_response",
    "page_to_json",
    "search_to_json",
    "user_to_json",
]
