"""HTTP entry points for clone jobs."""

import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vitrine_clone.account import NewAccountData, clone_account
from vitrine_clone.api.client import APIError
from vitrine_clone.auth import AdminSessionAuth, SharedSecretAuth
from vitrine_clone.clone import run_clone
from vitrine_clone.config import Settings
from vitrine_clone.errors import CloneError, InvalidRequestError
from vitrine_clone.models import CloneOptions
from vitrine_clone.output import CloneLogger

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, report: Any = None) -> JSONResponse:
    body: dict[str, Any] = {"error": {"message": message}}
    if report is not None:
        body["stats"] = report.to_dict()
    return JSONResponse(body, status_code=status_code)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _read_json(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequestError("Invalid JSON in request body") from e
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return payload


def create_app(
    settings: Settings | None = None,
    db: Any = None,
    fetcher: httpx.AsyncClient | None = None,
    batch_pause: float = 0.5,
) -> FastAPI:
    """Build the clone service.

    Args:
        settings: Service settings (read from the environment when None)
        db: Store client; built from settings on first use when None
        fetcher: HTTP client for image downloads; created on first use when None
        batch_pause: Seconds to pause between product batches
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if app.state.owns_db and app.state.db is not None:
            await app.state.db.close()
        if app.state.owns_fetcher and app.state.fetcher is not None:
            await app.state.fetcher.aclose()

    app = FastAPI(title="vitrine-clone", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.fetcher = fetcher
    app.state.owns_db = db is None
    app.state.owns_fetcher = fetcher is None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-api-key", "x-client-info", "apikey", "content-type"],
    )

    def get_db() -> Any:
        if app.state.db is None:
            app.state.db = settings.create_client()
        return app.state.db

    def get_fetcher() -> httpx.AsyncClient:
        if app.state.fetcher is None:
            app.state.fetcher = httpx.AsyncClient()
        return app.state.fetcher

    @app.exception_handler(CloneError)
    async def clone_error_handler(request: Request, exc: CloneError) -> JSONResponse:
        return _error_response(exc.status_code, exc.message, exc.report)

    @app.exception_handler(APIError)
    async def store_error_handler(request: Request, exc: APIError) -> JSONResponse:
        logger.error("Unhandled store error: %s", exc)
        return _error_response(502, "Store error")

    async def handle_clone(request: Request, authorization: Any) -> JSONResponse:
        db = get_db()
        await authorization.authorize(db)

        payload = await _read_json(request)
        source_id = payload.get("sourceUserId")
        target_id = payload.get("targetUserId")
        options = CloneOptions.from_dict(payload.get("options"))

        operation_log = None
        if settings.log_dir is not None and isinstance(source_id, str) and isinstance(target_id, str):
            operation_log = CloneLogger(source_id, target_id, options.to_dict(), settings.log_dir)

        report = await run_clone(
            db,
            get_fetcher(),
            source_id,
            target_id,
            options,
            timeout=settings.clone_timeout,
            operation_log=operation_log,
            batch_pause=batch_pause,
        )
        return JSONResponse(
            {
                "success": report.success,
                "message": "Clone operation completed",
                "stats": report.to_dict(),
            }
        )

    @app.post("/clone")
    async def clone_admin(request: Request, authorization: str | None = Header(default=None)) -> JSONResponse:
        """Clone between accounts on behalf of a signed-in admin."""
        return await handle_clone(request, AdminSessionAuth(_bearer_token(authorization)))

    @app.post("/clone/public")
    async def clone_public(request: Request, x_api_key: str | None = Header(default=None)) -> JSONResponse:
        """Clone between accounts for machine callers holding the shared secret."""
        return await handle_clone(request, SharedSecretAuth(x_api_key, settings.clone_api_key))

    @app.post("/clone-account")
    async def clone_account_route(request: Request, x_api_key: str | None = Header(default=None)) -> JSONResponse:
        """Create a new account as a copy of a template account."""
        db = get_db()
        await SharedSecretAuth(x_api_key, settings.clone_user_api_key).authorize(db)

        payload = await _read_json(request)
        new_account = NewAccountData.from_dict(payload.get("newUserData"))
        result = await clone_account(
            db,
            get_fetcher(),
            payload.get("originalUserId"),
            new_account,
            batch_pause=batch_pause,
        )
        return JSONResponse(
            {**result.to_dict(), "message": "User cloned successfully with all data and images"}
        )

    return app
