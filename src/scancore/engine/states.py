# src/scancore/engine/states.py
"""
ScanJob record and its lifecycle states.

A job's state is one of five frozen values (Pending, Running, Completed, Failed,
Cancelled). Completed always carries its report and Failed always carries its
error, so a finished job without either cannot be built. Terminal states accept
no further transitions; every mutation method returns False instead.

The mutation methods assume the caller holds ``job.lock`` (see
ScanJobRegistry.mutate).
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from scancore.engine.findings import AggregatedReport, Finding, Severity
from scancore.engine.source import SourceRef


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED})


@dataclass(frozen=True)
class Pending:
    status: ClassVar[ScanStatus] = ScanStatus.PENDING
    progress: int = 0


@dataclass(frozen=True)
class Running:
    status: ClassVar[ScanStatus] = ScanStatus.RUNNING
    progress: int = 0


@dataclass(frozen=True)
class Completed:
    status: ClassVar[ScanStatus] = ScanStatus.COMPLETED
    result: AggregatedReport
    progress: int = 100


@dataclass(frozen=True)
class Failed:
    status: ClassVar[ScanStatus] = ScanStatus.FAILED
    error: str
    error_kind: str = "error"
    progress: int = 0


@dataclass(frozen=True)
class Cancelled:
    status: ClassVar[ScanStatus] = ScanStatus.CANCELLED
    progress: int = 0


JobState = Union[Pending, Running, Completed, Failed, Cancelled]


@dataclass(frozen=True)
class ToolRun:
    """Outcome of one tool run: its findings, or an error marker."""

    tool: str
    findings: Tuple[Finding, ...] = ()
    error: Optional[str] = None
    error_kind: Optional[str] = None
    execution_time: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool,
            "success": self.succeeded,
            "findings": [f.model_dump(mode="json") for f in self.findings],
            "error": self.error,
            "error_kind": self.error_kind,
            "execution_time": round(self.execution_time, 3),
        }


class ScanConfig(BaseModel):
    """Per-scan options, forwarded unchanged to every child of a batch."""

    tools: List[str] = Field(default_factory=list)
    ai_analysis: bool = True
    severity_threshold: Severity = Severity.INFO


class BatchConfig(ScanConfig):
    network: str = "ethereum"


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    status: ScanStatus
    progress: int
    network: str
    owner_id: Optional[str]
    source_name: str
    tools: Tuple[str, ...]
    tool_results: Dict[str, ToolRun]
    result: Optional[AggregatedReport]
    error: Optional[str]
    error_kind: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self, include_findings: bool = True) -> Dict[str, Any]:
        data = {
            "job_id": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "network": self.network,
            "owner_id": self.owner_id,
            "source": self.source_name,
            "tools": list(self.tools),
            "tool_results": {name: run.to_dict() for name, run in self.tool_results.items()},
            "result": None,
            "error": self.error,
            "error_kind": self.error_kind,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.result is not None:
            data["result"] = self.result.model_dump(mode="json")
            if not include_findings:
                data["result"].pop("findings", None)
        return data


@dataclass(eq=False)
class ScanJob:
    id: str
    source: SourceRef
    network: str
    tools: Tuple[str, ...]
    config: ScanConfig
    owner_id: Optional[str] = None
    state: JobState = field(default_factory=Pending)
    tool_results: Dict[str, ToolRun] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def status(self) -> ScanStatus:
        return self.state.status

    @property
    def progress(self) -> int:
        return self.state.progress

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def start(self) -> bool:
        if not isinstance(self.state, Pending):
            return False
        self.state = Running(progress=0)
        return True

    def record_tool(self, run: ToolRun) -> bool:
        if not isinstance(self.state, Running) or run.tool in self.tool_results:
            return False
        self.tool_results[run.tool] = run
        progress = (100 * len(self.tool_results)) // len(self.tools)
        self.state = Running(progress=max(progress, self.state.progress))
        return True

    def complete(self, report: AggregatedReport) -> bool:
        if not isinstance(self.state, Running):
            return False
        self.state = Completed(result=report)
        return True

    def fail(self, error: str, error_kind: str = "error") -> bool:
        if self.is_terminal:
            return False
        self.state = Failed(error=error, error_kind=error_kind, progress=self.progress)
        return True

    def cancel(self) -> bool:
        if self.is_terminal:
            return False
        self.state = Cancelled(progress=self.progress)
        self.cancel_event.set()
        return True

    def snapshot(self) -> JobSnapshot:
        state = self.state
        return JobSnapshot(
            job_id=self.id,
            status=state.status,
            progress=state.progress,
            network=self.network,
            owner_id=self.owner_id,
            source_name=self.source.name,
            tools=self.tools,
            tool_results=dict(self.tool_results),
            result=state.result if isinstance(state, Completed) else None,
            error=state.error if isinstance(state, Failed) else None,
            error_kind=state.error_kind if isinstance(state, Failed) else None,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
