"""
ContentBridge export HTTP API.

FastAPI application exposing the export service:

    GET {prefix}/posts?count&startID&post_type&status
    GET {prefix}/post-types

Both routes require `Authorization: Bearer <token>` and are never cached.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from contentbridge import __version__
from contentbridge.core.errors import AuthError
from contentbridge.core.logging import get_logger
from contentbridge.export.service import ExportService

logger = get_logger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def create_app(service: ExportService, route_prefix: str = "/content-migrate/v1") -> FastAPI:
    """Build the export application around a configured service."""
    prefix = "/" + route_prefix.strip("/") if route_prefix.strip("/") else ""

    application = FastAPI(
        title="ContentBridge Export API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    application.state.export_service = service

    @application.middleware("http")
    async def disable_cache(request: Request, call_next: Any) -> Any:
        response = await call_next(request)
        if request.url.path.startswith(prefix + "/"):
            for name, value in NO_STORE_HEADERS.items():
                response.headers[name] = value
        return response

    @application.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.warning("Export request rejected", path=request.url.path, reason=exc.message)
        return JSONResponse(
            status_code=403,
            content={"code": "forbidden", "message": exc.message, "data": {"status": 403}},
        )

    def require_token(authorization: str | None = Header(default=None)) -> ExportService:
        service.authenticate(authorization)
        return service

    @application.get(prefix + "/posts")
    def get_posts(
        # Taken as text so a bad value never answers before the token check
        count: str | None = Query(default=None),
        start_id: str | None = Query(default=None, alias="startID"),
        post_type: str = Query(default="post"),
        status: str = Query(default="publish"),
        export: ExportService = Depends(require_token),
    ) -> dict[str, Any]:
        page = export.fetch_page(
            post_type=post_type, status=status, start_id=start_id, count=count
        )
        return page.to_dict()

    @application.get(prefix + "/post-types")
    def get_post_types(export: ExportService = Depends(require_token)) -> dict[str, Any]:
        return {"post_types": [t.to_dict() for t in export.fetch_types()]}

    @application.get("/health")
    def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": __version__}

    return application
