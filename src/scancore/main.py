# src/scancore/main.py

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scancore.api.routes import router
from scancore.config import Settings, get_settings
from scancore.engine.aggregator import ResultAggregator, ScoreWeights
from scancore.engine.batch import BatchScanCoordinator
from scancore.engine.db import create_session_factory
from scancore.engine.enricher import HeuristicEnricher
from scancore.engine.errors import InvalidInput, NotFound, PermissionDenied, ScanError
from scancore.engine.job_manager import ScanJobRegistry
from scancore.engine.scan_service import ScanService
from scancore.engine.store import ScanHistoryStore
from scancore.tools.registry import ToolRegistry, build_tool_registry

ERROR_STATUS = {
    InvalidInput: 400,
    PermissionDenied: 403,
    NotFound: 404,
}


def _error_response(request: Request, status_code: int, error: str, kind: Optional[str] = None):
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "kind": kind, "trace_id": trace_id}
    )


def create_app(settings: Optional[Settings] = None, tools: Optional[ToolRegistry] = None) -> FastAPI:
    """
    Build the API with its own registry, tool pool and (optional) history store.
    Run with ``uvicorn scancore.main:create_app --factory``.
    """
    settings = settings or get_settings()

    # Configure structured logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )

    store = ScanHistoryStore(create_session_factory(settings.database_url)) if settings.database_url else None
    registry = ScanJobRegistry(store=store)
    tools = tools or build_tool_registry(settings)
    aggregator = ResultAggregator(
        tool_priority=settings.tool_priority,
        weights=ScoreWeights(
            high=settings.high_severity_weight,
            medium=settings.medium_severity_weight,
            low=settings.low_severity_weight,
        ),
    )
    scan_service = ScanService(
        registry,
        tools,
        aggregator=aggregator,
        enricher=HeuristicEnricher() if settings.enable_ai_analysis else None,
        default_tools=[name for name in settings.default_tools if name in tools] or tools.names(),
        max_concurrent_tool_runs=settings.max_concurrent_tool_runs,
        poll_interval=settings.poll_interval,
    )
    coordinator = BatchScanCoordinator(scan_service, store=store,
                                       fail_on_any_child=settings.batch_fail_on_any_child)

    app = FastAPI(title="Smart Contract Scan Core")
    app.state.settings = settings
    app.state.store = store
    app.state.scan_service = scan_service
    app.state.batch_coordinator = coordinator

    @app.middleware("http")
    async def add_trace_id_and_log(request: Request, call_next):
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id
        logging.info(f"[trace_id={trace_id}] Incoming request: {request.method} {request.url}")
        try:
            response = await call_next(request)
        except Exception as exc:
            logging.error(f"[trace_id={trace_id}] Unhandled error: {exc}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Internal server error", "trace_id": trace_id}
            )
        response.headers["X-Trace-Id"] = trace_id
        return response

    @app.exception_handler(ScanError)
    async def scan_error_handler(request: Request, exc: ScanError):
        status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        log = logging.warning if status_code < 500 else logging.error
        log(f"[trace_id={getattr(request.state, 'trace_id', '-')}] {exc.__class__.__name__}: {exc}")
        return _error_response(request, status_code, str(exc), exc.kind)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logging.error(f"[trace_id={getattr(request.state, 'trace_id', '-')}] Exception: {exc}")
        return _error_response(request, 500, str(exc))

    app.include_router(router)

    @app.on_event("startup")
    def on_startup():
        logging.info(f"Scan Core API started. tools={tools.names()} persistence={'on' if store else 'off'}")

    @app.on_event("shutdown")
    def on_shutdown():
        scan_service.shutdown(wait=False)

    return app
