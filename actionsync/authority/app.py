"""FastAPI application exposing a LogAuthority over HTTP."""

import json
import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Config
from .log_authority import LogAuthority, handle_sync_request

logger = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    authority: LogAuthority | None = None,
) -> FastAPI:
    """Create the authority application.

    Args:
        config: Application configuration.
        authority: Log to serve. A fresh in-memory one is created if omitted.

    Returns:
        Configured FastAPI application.
    """
    if config is None:
        config = Config()
    if authority is None:
        authority = LogAuthority()

    app = FastAPI(
        title="ActionSync Authority",
        description="Shared action log for ActionSync devices",
        version="0.1.0",
    )

    app.state.config = config
    app.state.authority = authority

    # ==================== Error Handlers ====================

    @app.exception_handler(404)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": "Endpoint not found"},
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )

    # ==================== Sync ====================

    @app.post("/sync")
    async def sync(request: Request) -> JSONResponse:
        """Store a device's batch and return what it has missed."""
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Request body must be JSON"},
            )

        status, content = handle_sync_request(authority, body)
        return JSONResponse(status_code=status, content=content)

    # ==================== Diagnostics ====================

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness check with aggregate counts."""
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "stats": authority.health(),
        }

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        return authority.stats(recent=config.server.recent_records)

    @app.post("/clear")
    async def clear() -> dict[str, Any]:
        """Destructive reset, for testing."""
        authority.reset()
        return {"success": True, "message": "All data cleared"}

    @app.get("/device/{origin}/records")
    async def device_records(origin: str) -> dict[str, Any]:
        entries = authority.records_for(origin)
        return {
            "origin": origin,
            "records": [entry.to_dict() for entry in entries],
            "count": len(entries),
        }

    return app
