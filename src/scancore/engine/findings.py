# src/scancore/engine/findings.py
"""
Finding and report value types shared by tool adapters, the aggregator and exports.
"""
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def parse(cls, raw) -> "Severity":
        """Map a tool's own severity vocabulary onto the four report levels."""
        value = str(raw or "").strip().lower()
        if value in ("critical", "high"):
            return cls.HIGH
        if value in ("medium", "warning"):
            return cls.MEDIUM
        if value == "low":
            return cls.LOW
        if value in ("info", "informational", "optimization"):
            return cls.INFO
        return cls.MEDIUM

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: str
    severity: Severity
    title: str
    description: str = ""
    file_path: str = ""
    line: int = 0
    recommendation: str = ""
    category: str = "general"
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    risk_score: Optional[int] = Field(None, ge=0, le=100)
    reported_by: Tuple[str, ...] = ()


class SeveritySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    total: int = 0
    by_tool: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)


class ToolStatus(BaseModel):
    """One line of the per-tool section of a report."""

    model_config = ConfigDict(frozen=True)

    name: str
    success: bool
    finding_count: int = 0
    execution_time: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[str] = None


class AggregatedReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    findings: Tuple[Finding, ...] = ()
    summary: SeveritySummary = Field(default_factory=SeveritySummary)
    score: int = Field(100, ge=0, le=100)
    tools: Tuple[ToolStatus, ...] = ()
    risk_level: Optional[str] = None
    recommendations: Tuple[str, ...] = ()
    enriched: bool = False
