# src/scancore/api/routes.py
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, Response, UploadFile
from pydantic import ValidationError

from scancore.api.schemas import (
    BatchSubmitted,
    BatchSummary,
    CancelResult,
    JobSubmitted,
    ScanRequest,
    ToolInfo,
)
from scancore.config import Settings
from scancore.engine.batch import BatchScanCoordinator
from scancore.engine.errors import CancelOutcome, InvalidInput
from scancore.engine.scan_service import ScanService
from scancore.engine.source import SourceRef
from scancore.engine.states import BatchConfig, ScanConfig
from scancore.engine.store import ScanHistoryStore
from scancore.utils.export_utils import EXPORT_FORMATS
from scancore.utils.extract_sources import extract_sources

router = APIRouter()


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_scan_service(request: Request) -> ScanService:
    return request.app.state.scan_service


def get_batch_coordinator(request: Request) -> BatchScanCoordinator:
    return request.app.state.batch_coordinator


def get_store(request: Request) -> Optional[ScanHistoryStore]:
    return request.app.state.store


def _read_upload(upload: UploadFile, settings: Settings) -> List[SourceRef]:
    raw = upload.file.read(settings.max_upload_size + 1)
    if len(raw) > settings.max_upload_size:
        raise InvalidInput(f"{upload.filename} exceeds the {settings.max_upload_size} byte upload limit")
    return extract_sources(raw, upload.filename)


def _split_tools(tools: Optional[str]) -> Optional[List[str]]:
    if tools is None or not tools.strip():
        return None
    return [t.strip() for t in tools.split(",") if t.strip()]


def _cancel_result(outcome: CancelOutcome, what: str) -> CancelResult:
    if outcome == CancelOutcome.CANCELLED:
        return CancelResult(success=True, outcome=outcome.value, message=f"{what} cancelled")
    return CancelResult(success=False, outcome=outcome.value, message=f"{what} already finished")


# ----------------------------------------------------------------------
# Single scans
# ----------------------------------------------------------------------

@router.post(
    "/scan/upload",
    summary="Upload a contract and submit a scan job (async)",
    response_description="Job ID and submission status",
    tags=["Scan Jobs"],
    response_model=JobSubmitted,
    responses={
        200: {"description": "Job submitted successfully"},
        400: {"description": "Invalid upload or tool list"},
    },
)
def upload_scan(
    file: UploadFile = File(...),
    network: str = Form("ethereum"),
    tools: Optional[str] = Form(None, description="Comma separated tool names"),
    x_user_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings_dep),
    scan_service: ScanService = Depends(get_scan_service),
):
    """
    Submit a scan for one uploaded .sol file (or a .json bundle holding a single source).
    """
    sources = _read_upload(file, settings)
    if len(sources) != 1:
        raise InvalidInput(f"{file.filename} contains {len(sources)} sources, submit it as a batch instead")
    job_id = scan_service.submit(sources[0], network=network, owner_id=x_user_id, tools=_split_tools(tools))
    return JobSubmitted(job_id=job_id, status="submitted")


@router.post(
    "/scan/async",
    summary="Submit a scan job for inline source code (async)",
    response_description="Job ID and submission status",
    tags=["Scan Jobs"],
    response_model=JobSubmitted,
)
def scan_async(
    request: ScanRequest,
    x_user_id: Optional[str] = Header(None),
    scan_service: ScanService = Depends(get_scan_service),
):
    config = ScanConfig(ai_analysis=request.ai_analysis, severity_threshold=request.severity_threshold)
    job_id = scan_service.submit(
        SourceRef.from_content(request.source_code, filename=request.filename),
        network=request.network,
        owner_id=x_user_id,
        tools=request.tools,
        config=config,
    )
    return JobSubmitted(job_id=job_id, status="submitted")


@router.get(
    "/scan/job/{job_id}",
    summary="Get scan job status and result",
    response_description="Scan job status, per-tool results and report",
    tags=["Scan Jobs"],
    response_model=dict,
    responses={
        200: {"description": "Job status and result"},
        404: {"description": "Job not found"},
    },
)
def get_scan_job_status(job_id: str, scan_service: ScanService = Depends(get_scan_service)):
    """
    Get the status and result of a scan job by job ID.
    """
    return scan_service.get_status(job_id).to_dict()


@router.post(
    "/scan/job/{job_id}/cancel",
    summary="Cancel a scan job",
    tags=["Scan Jobs"],
    response_model=CancelResult,
    responses={404: {"description": "Job not found"}},
)
def cancel_scan_job(job_id: str, scan_service: ScanService = Depends(get_scan_service)):
    return _cancel_result(scan_service.cancel(job_id), "Scan job")


@router.get(
    "/scan/history",
    summary="Query scan job history",
    response_description="List of scan jobs filtered by owner and status",
    tags=["Scan Jobs"],
    response_model=list,
)
def get_scan_history(
    owner_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: Optional[ScanHistoryStore] = Depends(get_store),
    scan_service: ScanService = Depends(get_scan_service),
):
    """
    Query scan job history by owner and/or status. Falls back to the jobs still held
    in memory when persistence is disabled.
    """
    if store is not None:
        return store.scan_history(owner_id=owner_id, status=status, limit=limit, offset=offset)
    jobs = [
        s.to_dict(include_findings=False) for s in scan_service.registry.list_jobs(owner_id)
        if status is None or s.status.value == status
    ]
    return jobs[offset:offset + limit]


# ----------------------------------------------------------------------
# Batches
# ----------------------------------------------------------------------

@router.post(
    "/batch/start",
    summary="Upload several contracts and start a batch scan",
    tags=["Batch Jobs"],
    response_model=BatchSubmitted,
    responses={400: {"description": "Missing owner, bad file or bad config"}},
)
def start_batch(
    files: List[UploadFile] = File(...),
    config: Optional[str] = Form(None, description="JSON encoded batch configuration"),
    x_user_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings_dep),
    coordinator: BatchScanCoordinator = Depends(get_batch_coordinator),
):
    try:
        batch_config = BatchConfig(**json.loads(config)) if config else BatchConfig()
    except (ValueError, TypeError, ValidationError) as e:
        raise InvalidInput(f"Invalid batch configuration: {e}")
    sources = [source for upload in files for source in _read_upload(upload, settings)]
    batch_id = coordinator.start_batch(sources, owner_id=x_user_id, config=batch_config)
    snapshot = coordinator.get_batch_status(batch_id)
    return BatchSubmitted(
        batch_id=batch_id,
        status=snapshot.status.value,
        total_files=snapshot.total,
        child_job_ids=list(snapshot.child_job_ids),
    )


@router.get(
    "/batch/jobs",
    summary="List the caller's batch jobs",
    tags=["Batch Jobs"],
    response_model=list,
)
def list_batches(
    x_user_id: str = Header(...),
    coordinator: BatchScanCoordinator = Depends(get_batch_coordinator),
):
    return [snapshot.to_dict() for snapshot in coordinator.list_batches(x_user_id)]


@router.get(
    "/batch/history",
    summary="Query persisted batch history for the caller",
    tags=["Batch Jobs"],
    response_model=list,
)
def get_batch_history(
    x_user_id: str = Header(...),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: Optional[ScanHistoryStore] = Depends(get_store),
    coordinator: BatchScanCoordinator = Depends(get_batch_coordinator),
):
    if store is not None:
        return store.batch_history(x_user_id, limit=limit, offset=offset)
    batches = [snapshot.to_dict() for snapshot in coordinator.list_batches(x_user_id)]
    return batches[offset:offset + limit]


@router.get(
    "/batch/{batch_id}",
    summary="Get batch status and progress",
    tags=["Batch Jobs"],
    response_model=dict,
    responses={404: {"description": "Batch not found"}},
)
def get_batch_status(batch_id: str, coordinator: BatchScanCoordinator = Depends(get_batch_coordinator)):
    snapshot = coordinator.get_batch_status(batch_id)
    data = snapshot.to_dict()
    data["results"] = [
        child.to_dict(include_findings=False) for child in coordinator.get_children(batch_id)
    ]
    return data


@router.get(
    "/batch/{batch_id}/summary",
    summary="Get the aggregate summary of a batch",
    tags=["Batch Jobs"],
    response_model=BatchSummary,
    responses={404: {"description": "Batch not found"}},
)
def get_batch_summary(batch_id: str, coordinator: BatchScanCoordinator = Depends(get_batch_coordinator)):
    snapshot = coordinator.get_batch_status(batch_id)
    return BatchSummary(
        batch_id=batch_id,
        status=snapshot.status.value,
        progress=snapshot.progress,
        summary=coordinator.get_summary(batch_id),
    )


@router.post(
    "/batch/{batch_id}/cancel",
    summary="Cancel a batch and its unfinished scans",
    tags=["Batch Jobs"],
    response_model=CancelResult,
    responses={
        403: {"description": "Batch belongs to another user"},
        404: {"description": "Batch not found"},
    },
)
def cancel_batch(
    batch_id: str,
    x_user_id: str = Header(...),
    coordinator: BatchScanCoordinator = Depends(get_batch_coordinator),
):
    return _cancel_result(coordinator.cancel_batch(batch_id, x_user_id), "Batch")


@router.get(
    "/batch/{batch_id}/export",
    summary="Export the finished results of a batch",
    tags=["Batch Jobs"],
    responses={
        200: {"description": "Export document"},
        400: {"description": "Unsupported format"},
        404: {"description": "Batch not found"},
    },
)
def export_batch(
    batch_id: str,
    format: str = Query("json", description="json, csv or html"),
    coordinator: BatchScanCoordinator = Depends(get_batch_coordinator),
):
    content = coordinator.export_results(batch_id, format)
    fmt = format.lower()
    return Response(
        content=content,
        media_type=EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f'attachment; filename="{batch_id}.{fmt}"'},
    )


# ----------------------------------------------------------------------
# Misc
# ----------------------------------------------------------------------

@router.get("/tools", response_model=List[ToolInfo], tags=["Tools"])
def list_tools(scan_service: ScanService = Depends(get_scan_service)):
    return scan_service.tools.describe()


@router.get("/health")
def health_check():
    return {"status": "ok"}
