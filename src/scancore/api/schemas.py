# src/scancore/api/schemas.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from scancore.engine.findings import Severity


class ScanRequest(BaseModel):
    source_code: str = Field(..., description="Solidity source of the contract to scan")
    filename: Optional[str] = Field("Contract.sol", description="File name reported in findings")
    network: str = Field("ethereum", description="Target network, informational only")
    tools: Optional[List[str]] = Field(None, description="Tools to run, defaults to the configured set")
    ai_analysis: bool = Field(True, description="Attach confidence, risk and remediation to findings")
    severity_threshold: Severity = Field(Severity.INFO, description="Drop findings below this severity")


class JobSubmitted(BaseModel):
    job_id: str
    status: str


class BatchSubmitted(BaseModel):
    batch_id: str
    status: str
    total_files: int
    child_job_ids: List[str]


class CancelResult(BaseModel):
    success: bool
    outcome: str
    message: str


class ToolInfo(BaseModel):
    name: str
    timeout: float


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: Optional[str] = None
    trace_id: Optional[str] = None
    detail: Optional[Any] = None


class BatchSummary(BaseModel):
    batch_id: str
    status: str
    progress: int
    summary: Dict[str, Any]
