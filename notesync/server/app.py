"""FastAPI application exposing the sync operation."""

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Config
from ..sync import SyncCoordinator, SyncError, UnauthenticatedError
from .auth import TokenAuthenticator

logger = logging.getLogger(__name__)


def _error_response(error: SyncError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content={"error": error.to_dict()})


def _read_callable_data(raw: bytes) -> Any:
    """Extract the ``data`` field of a callable request body.

    Returns None when the body is not a JSON object with a ``data`` field,
    which the coordinator then rejects as invalid sync data.
    """
    try:
        body = json.loads(raw)
    except (ValueError, RecursionError):
        return None

    if not isinstance(body, dict):
        return None
    return body.get("data")


def create_app(
    config: Config,
    coordinator: SyncCoordinator,
    authenticator: TokenAuthenticator | None = None,
) -> FastAPI:
    """Create the sync server application.

    Args:
        config: Application configuration.
        coordinator: Coordinator running sync rounds against the note store.
        authenticator: Identity provider (defaults to tokens from config).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="notesync",
        description="Two-way incremental note synchronization server",
        version="0.1.0",
    )

    if authenticator is None:
        authenticator = TokenAuthenticator(config.auth.tokens)

    # Store references for route handlers
    app.state.config = config
    app.state.coordinator = coordinator
    app.state.authenticator = authenticator

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "ok"}

    @app.post("/sync")
    async def sync(request: Request):
        """Run one sync round.

        Request body is ``{"data": SyncData}``, the reply is
        ``{"result": SyncData}`` or ``{"error": {"status", "message"}}``.
        """
        caller_id = authenticator.authenticate(request.headers.get("authorization"))
        raw = await request.body()

        try:
            result = coordinator.handle(caller_id, _read_callable_data(raw))
        except SyncError as e:
            return _error_response(e)

        return {"result": result}

    @app.get("/api/stats")
    async def stats(request: Request):
        """Note counts for the calling user."""
        caller_id = authenticator.authenticate(request.headers.get("authorization"))
        if not caller_id:
            return _error_response(UnauthenticatedError("Authentication required"))

        return {"user_id": caller_id, **coordinator.store.get_stats(caller_id)}

    return app
