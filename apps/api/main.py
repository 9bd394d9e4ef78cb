"""FastAPI wrapper for template resolution, matching and extraction."""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.config.loader import load_settings
from core.extraction.content import DocumentInput, DocumentSource, InMemoryDocumentContent
from core.extraction.engine import ExtractionEngine
from core.matching.service import TemplateMatchingService
from core.templates.bundle_store import parse_template_bundle
from core.templates.models import EffectiveTemplate
from core.templates.resolver import InheritanceResolver
from core.templates.store import InMemoryTemplateStore
from core.utils.errors import (
    CycleDetectedError,
    InvalidPatternError,
    MissingAncestorError,
    TemplateNotFoundError,
)
from core.utils.events import dump_json, elapsed_ms

app = FastAPI(title="docmatch API", version="0.1.0")
logger = logging.getLogger("docmatch.api")

REQUEST_ID_HEADER = "X-Docmatch-Request-Id"

_DEFAULT_MAX_CONCURRENCY = 4
_DEFAULT_QUEUE_TIMEOUT_SECONDS = 0.0

T = TypeVar("T")


@dataclass
class _ConcurrencyLimiter:
    max_concurrency: int
    queue_timeout_seconds: float
    semaphore: threading.BoundedSemaphore


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


class _RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ResolveRequest(_RequestModel):
    bundle: dict[str, Any]
    template_id: str = Field(min_length=1)


class MatchRequest(_RequestModel):
    bundle: dict[str, Any]
    document: DocumentInput
    template_ids: list[str] | None = None
    minimum_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    max_results: int | None = Field(default=None, ge=1)


class ExtractRequest(_RequestModel):
    bundle: dict[str, Any]
    template_id: str = Field(min_length=1)
    document: DocumentInput


_limiter_lock = threading.Lock()
_limiter_cache: _ConcurrencyLimiter | None = None
_service_lock = threading.Lock()
_service_cache: TemplateMatchingService | None = None


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag each request with an id, reusing the caller's header when present."""

    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    _log_event(
        logging.WARNING,
        "error",
        request_id,
        error_code="INVALID_REQUEST",
        status_code=422,
        failure_stage="validate_request",
    )
    return _error_response(
        status_code=422,
        error_code="INVALID_REQUEST",
        message="request body failed validation",
        request_id=request_id,
        detail={"errors": [_error_summary(error) for error in exc.errors()]},
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/meta")
async def meta_v1(request: Request) -> JSONResponse:
    """Service version and the matching settings in effect."""

    request_id = _request_id_from_request(request)
    service = _get_service()
    limiter = _get_concurrency_limiter()
    payload = {
        "version": app.version,
        "package_version": _package_version(),
        "max_concurrency": limiter.max_concurrency,
        "settings": service.settings.model_dump(mode="json"),
    }
    return JSONResponse(status_code=200, headers={REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/resolve", response_model=None)
async def resolve_v1(request: Request, body: ResolveRequest) -> JSONResponse:
    """Return the effective template for ``template_id``."""

    def work() -> dict[str, Any]:
        store = _parse_bundle(body.bundle)
        effective = _resolve_required(InheritanceResolver(store), body.template_id)
        return {"template": effective.model_dump(mode="json")}

    return await _execute(request, "resolve", work)


@app.post("/v1/match", response_model=None)
async def match_v1(request: Request, body: MatchRequest) -> JSONResponse:
    """Rank the bundle's active templates against one document."""

    def work() -> dict[str, Any]:
        store = _parse_bundle(body.bundle)
        service = _get_service()
        source = DocumentSource.from_input(body.document)
        candidates, skipped = _candidate_templates(store, body.template_ids)
        matches = service.get_all_matches(
            source,
            candidates,
            minimum_confidence=body.minimum_confidence,
            max_results=body.max_results,
        )
        return {
            "document_id": source.document_id,
            "matches": [match.model_dump(mode="json") for match in matches],
            "skipped_templates": skipped,
        }

    return await _execute(request, "match", work)


@app.post("/v1/extract", response_model=None)
async def extract_v1(request: Request, body: ExtractRequest) -> JSONResponse:
    """Extract field values from one document with one template."""

    def work() -> dict[str, Any]:
        store = _parse_bundle(body.bundle)
        effective = _resolve_required(InheritanceResolver(store), body.template_id)
        content = InMemoryDocumentContent.from_input(body.document)
        result = ExtractionEngine().extract(effective, content)
        return {
            "document_id": body.document.document_id,
            "extraction": result.model_dump(mode="json"),
        }

    return await _execute(request, "extract", work)


async def _execute(request: Request, operation: str, work: Callable[[], dict[str, Any]]) -> JSONResponse:
    """Run ``work`` off the event loop inside a concurrency slot and map failures."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    limiter = _get_concurrency_limiter()
    slot_acquired, queue_wait_ms = await _try_acquire_concurrency_slot(limiter)
    if not slot_acquired:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="TOO_MANY_REQUESTS",
            status_code=429,
            failure_stage=operation,
            queue_wait_ms=queue_wait_ms,
        )
        return _error_response(
            status_code=429,
            error_code="TOO_MANY_REQUESTS",
            message="server busy",
            request_id=request_id,
            detail={
                "max_concurrency": limiter.max_concurrency,
                "queue_timeout_seconds": limiter.queue_timeout_seconds,
            },
        )

    try:
        payload = await asyncio.to_thread(_mapped(work))
    except ApiRequestError as exc:
        _log_event(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            "error",
            request_id,
            error_code=exc.error_code,
            status_code=exc.status_code,
            failure_stage=operation,
        )
        return _error_response(
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            request_id=request_id,
            detail=exc.detail,
        )
    except Exception as exc:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage=operation,
        )
        return _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"error": str(exc), "total_ms": elapsed_ms(request_started)},
        )
    finally:
        if slot_acquired:
            limiter.semaphore.release()

    _log_event(
        logging.INFO,
        "request_complete",
        request_id,
        operation=operation,
        queue_wait_ms=queue_wait_ms,
        total_ms=elapsed_ms(request_started),
    )
    return JSONResponse(status_code=200, headers={REQUEST_ID_HEADER: request_id}, content=payload)


def _mapped(work: Callable[[], T]) -> Callable[[], T]:
    """Translate domain exceptions raised by ``work`` into ``ApiRequestError``."""

    def run() -> T:
        try:
            return work()
        except TemplateNotFoundError as exc:
            raise ApiRequestError(
                status_code=404,
                error_code="TEMPLATE_NOT_FOUND",
                message=str(exc),
                detail={"template_id": exc.template_id},
            ) from exc
        except CycleDetectedError as exc:
            raise ApiRequestError(
                status_code=422,
                error_code="INHERITANCE_CYCLE",
                message=str(exc),
                detail={"chain": exc.chain},
            ) from exc
        except MissingAncestorError as exc:
            raise ApiRequestError(
                status_code=422,
                error_code="MISSING_ANCESTOR",
                message=str(exc),
                detail={"template_id": exc.template_id, "child_id": exc.child_id},
            ) from exc
        except InvalidPatternError as exc:
            raise ApiRequestError(
                status_code=422,
                error_code="INVALID_PATTERN",
                message=str(exc),
                detail={
                    "pattern": exc.pattern,
                    "field_name": exc.field_name,
                    "template_id": exc.template_id,
                },
            ) from exc

    return run


def _parse_bundle(raw: dict[str, Any]) -> InMemoryTemplateStore:
    try:
        return parse_template_bundle(raw, source="request")
    except ValueError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_BUNDLE",
            message="template bundle is invalid",
            detail={"error": str(exc)},
        ) from exc


def _resolve_required(resolver: InheritanceResolver, template_id: str) -> EffectiveTemplate:
    effective = resolver.resolve(template_id)
    if effective is None:
        raise TemplateNotFoundError(f"Template not found: {template_id}", template_id=template_id)
    return effective


def _candidate_templates(
    store: InMemoryTemplateStore, template_ids: list[str] | None
) -> tuple[list[EffectiveTemplate], dict[str, str]]:
    resolver = InheritanceResolver(store)
    wanted = set(template_ids) if template_ids else None
    candidates: list[EffectiveTemplate] = []
    skipped: dict[str, str] = {}
    for template in store.list_templates(active_only=True):
        if wanted is not None and template.id not in wanted:
            continue
        try:
            effective = resolver.resolve(template.id)
        except (CycleDetectedError, MissingAncestorError) as exc:
            skipped[template.id] = str(exc)
            continue
        if effective is not None:
            candidates.append(effective)
    return candidates, skipped


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _max_concurrency() -> int:
    raw = os.getenv("DOCMATCH_API_MAX_CONCURRENCY")
    if raw is None:
        return _DEFAULT_MAX_CONCURRENCY
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_CONCURRENCY
    return parsed if parsed > 0 else _DEFAULT_MAX_CONCURRENCY


def _queue_timeout_seconds() -> float:
    raw = os.getenv("DOCMATCH_API_QUEUE_TIMEOUT_SECONDS")
    if raw is None:
        return _DEFAULT_QUEUE_TIMEOUT_SECONDS
    try:
        parsed = float(raw)
    except ValueError:
        return _DEFAULT_QUEUE_TIMEOUT_SECONDS
    return parsed if parsed >= 0 else _DEFAULT_QUEUE_TIMEOUT_SECONDS


def _get_concurrency_limiter() -> _ConcurrencyLimiter:
    global _limiter_cache

    max_concurrency = _max_concurrency()
    queue_timeout = _queue_timeout_seconds()

    with _limiter_lock:
        if (
            _limiter_cache is None
            or _limiter_cache.max_concurrency != max_concurrency
            or _limiter_cache.queue_timeout_seconds != queue_timeout
        ):
            _limiter_cache = _ConcurrencyLimiter(
                max_concurrency=max_concurrency,
                queue_timeout_seconds=queue_timeout,
                semaphore=threading.BoundedSemaphore(value=max_concurrency),
            )
        return _limiter_cache


async def _try_acquire_concurrency_slot(limiter: _ConcurrencyLimiter) -> tuple[bool, int]:
    waited_started = time.perf_counter()
    timeout_seconds = limiter.queue_timeout_seconds

    if timeout_seconds == 0:
        acquired_now = limiter.semaphore.acquire(blocking=False)
        return acquired_now, elapsed_ms(waited_started)

    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if limiter.semaphore.acquire(blocking=False):
            return True, elapsed_ms(waited_started)
        await asyncio.sleep(0.01)

    return False, elapsed_ms(waited_started)


def _get_service() -> TemplateMatchingService:
    """Process-wide matching service so fingerprint caches survive across requests."""

    global _service_cache

    with _service_lock:
        if _service_cache is None:
            raw_path = os.getenv("DOCMATCH_SETTINGS_PATH")
            settings = load_settings(Path(raw_path) if raw_path else None)
            _service_cache = TemplateMatchingService(settings)
        return _service_cache


def _package_version() -> str:
    try:
        return importlib.metadata.version("docmatch")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _error_summary(error: Any) -> dict[str, Any]:
    return {
        "loc": [str(part) for part in error.get("loc", ())],
        "msg": str(error.get("msg", "")),
        "type": str(error.get("type", "")),
    }


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "request_id": request_id,
            "detail": dict(detail or {}),
        },
    )


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, dump_json(payload))
