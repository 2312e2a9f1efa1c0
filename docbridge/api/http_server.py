"""
HTTP gateway for DocBridge.

Exposes registered public functions over JSON:

    POST /api/query/{name}      {"args": {...}}  -> {"value": ...}
    POST /api/mutation/{name}   {"args": {...}}  -> {"value": ...}
    POST /api/action/{name}     {"args": {...}}  -> {"value": ...}
    GET  /api/schema                              -> schema + fingerprint
    GET  /health

Invariants:
    - Internal functions are never reachable (they answer 404)
    - The URL kind must match the function's kind
    - Errors are returned as {"error", "code", "details"} with a status
      derived from the error kind

How to change safely:
    - Keep STATUS_BY_ERROR in sync with docbridge.errors
    - Version the routes if the payload shape changes
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..errors import (
    DocBridgeError,
    FunctionNotFound,
    HandlerError,
    InvalidIdentifier,
    NotFoundError,
    QueryError,
    SchemaError,
    TransactionAborted,
    ValidationError,
)
from ..functions.registration import FunctionKind
from ..functions.runner import FunctionRunner
from ..store.base import StoreError
from .config import Settings

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: list[tuple[type[DocBridgeError], int]] = [
    (ValidationError, 400),
    (InvalidIdentifier, 400),
    (QueryError, 400),
    (SchemaError, 400),
    (HandlerError, 400),
    (NotFoundError, 404),
    (FunctionNotFound, 404),
    (TransactionAborted, 409),
]


def status_for(error: DocBridgeError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


# --- Request/Response Models ---


class CallRequest(BaseModel):
    """Request to call a function."""

    args: dict[str, Any] | None = Field(None, description="Function arguments")


class CallResponse(BaseModel):
    """Successful function call."""

    value: Any = None


class SchemaResponse(BaseModel):
    """Schema and registered public functions."""

    schema_: dict[str, Any] = Field(..., alias="schema")
    fingerprint: str | None
    functions: list[dict[str, Any]]

    model_config = {"populate_by_name": True}


# --- Dependencies ---


def get_runner(request: Request) -> FunctionRunner:
    """Get the function runner from app state."""
    return request.app.state.runner


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


router = APIRouter(prefix="/api", tags=["DocBridge"])


async def _call(
    runner: FunctionRunner,
    settings: Settings,
    kind: FunctionKind,
    name: str,
    body: CallRequest | None = None,
) -> CallResponse:
    fn = runner.functions.get(name)
    if not fn.is_public:
        raise FunctionNotFound(f"Function '{name}' is not registered", name=name)

    runs = {
        FunctionKind.QUERY: runner.run_query,
        FunctionKind.MUTATION: runner.run_mutation,
        FunctionKind.ACTION: runner.run_action,
    }
    call = runs[kind](fn, body.args if body is not None else None)
    if settings.function_timeout_s > 0:
        value = await asyncio.wait_for(call, timeout=settings.function_timeout_s)
    else:
        value = await call
    logger.debug("HTTP function call", extra={"function": name, "kind": kind.value})
    return CallResponse(value=value)


@router.post("/query/{name:path}", response_model=CallResponse)
async def call_query(
    name: str,
    body: CallRequest | None = None,
    runner: FunctionRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings),
):
    """Run a public query."""
    return await _call(runner, settings, FunctionKind.QUERY, name, body)


@router.post("/mutation/{name:path}", response_model=CallResponse)
async def call_mutation(
    name: str,
    body: CallRequest | None = None,
    runner: FunctionRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings),
):
    """Run a public mutation as one atomic unit of work."""
    return await _call(runner, settings, FunctionKind.MUTATION, name, body)


@router.post("/action/{name:path}", response_model=CallResponse)
async def call_action(
    name: str,
    body: CallRequest | None = None,
    runner: FunctionRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings),
):
    """Run a public action."""
    return await _call(runner, settings, FunctionKind.ACTION, name, body)


@router.get("/schema", response_model=SchemaResponse, response_model_by_alias=True)
async def get_schema(
    runner: FunctionRunner = Depends(get_runner),
    settings: Settings = Depends(get_settings),
):
    """Return the schema, its fingerprint and the public functions."""
    if not settings.expose_schema:
        raise FunctionNotFound("Schema endpoint is disabled")
    return SchemaResponse(
        schema=runner.registry.to_dict(),
        fingerprint=runner.registry.fingerprint,
        functions=[
            {**fn.to_dict(), "name": name}
            for name, fn in runner.functions.items()
            if fn.is_public
        ],
    )


# --- Application ---


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocBridgeError)
    async def docbridge_error(request: Request, exc: DocBridgeError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"Unhandled DocBridge error: {exc.message}", exc_info=exc)
        return JSONResponse(status_code=status, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(asyncio.TimeoutError)
    async def timeout_error(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
        return JSONResponse(
            status_code=504,
            content={"error": "Function call timed out", "code": "TIMEOUT", "details": {}},
        )

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Store error: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={"error": str(exc), "code": "STORE_ERROR", "details": {}},
        )

    @app.exception_handler(Exception)
    async def handler_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"HTTP handler error: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc), "code": "INTERNAL", "details": {}},
        )


def create_app(runner: FunctionRunner, settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application serving ``runner``'s functions.

    The store is connected on startup if it is not already, and closed on
    shutdown only if the app connected it.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        opened = not runner.store.is_connected
        if opened:
            await runner.store.connect()
        yield
        if opened:
            await runner.store.close()

    app = FastAPI(
        title="DocBridge",
        description="Typed document access layer: call registered queries, mutations and actions.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runner = runner
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy" if runner.store.is_connected else "degraded",
            "service": "docbridge",
            "schema_fingerprint": runner.registry.fingerprint,
        }

    return app
