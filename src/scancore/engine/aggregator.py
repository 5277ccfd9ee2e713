# src/scancore/engine/aggregator.py
"""
ResultAggregator: merges the findings of every tool run on one source unit into a
single deduplicated report with a severity summary and a 0-100 security score.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from scancore.engine.errors import AggregationError, AllToolsFailed, ScanError
from scancore.engine.findings import (
    AggregatedReport,
    Finding,
    Severity,
    SeveritySummary,
    ToolStatus,
)
from scancore.engine.states import ToolRun

DEFAULT_TOOL_PRIORITY = ("slither", "mythril", "manticore", "echidna", "patterns")

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ScoreWeights:
    """Points deducted from 100 per distinct finding of each severity."""

    high: int = 20
    medium: int = 10
    low: int = 0
    info: int = 0

    def score(self, summary: SeveritySummary) -> int:
        deducted = (
            summary.high * self.high
            + summary.medium * self.medium
            + summary.low * self.low
            + summary.info * self.info
        )
        return max(0, min(100, 100 - deducted))


def normalize_title(title: str) -> str:
    return _WHITESPACE.sub(" ", (title or "").strip().lower())


def dedup_key(finding: Finding) -> Tuple[str, int, str]:
    return (finding.file_path, finding.line, normalize_title(finding.title))


class ResultAggregator:
    def __init__(self, tool_priority: Sequence[str] = DEFAULT_TOOL_PRIORITY,
                 weights: Optional[ScoreWeights] = None):
        self.tool_priority = tuple(tool_priority)
        self.weights = weights or ScoreWeights()

    def _tool_order(self, tool_results: Mapping[str, ToolRun]) -> List[str]:
        rank = {name: i for i, name in enumerate(self.tool_priority)}
        return sorted(tool_results, key=lambda name: (rank.get(name, len(rank)), name))

    def merge(self, tool_results: Mapping[str, ToolRun],
              severity_threshold: Severity = Severity.INFO) -> AggregatedReport:
        if not tool_results or all(not run.succeeded for run in tool_results.values()):
            errors = "; ".join(f"{name}: {run.error}" for name, run in tool_results.items())
            raise AllToolsFailed(f"No analysis tool produced usable output ({errors or 'no tools ran'})")
        try:
            return self._merge(tool_results, severity_threshold)
        except ScanError:
            raise
        except Exception as e:
            logging.error(f"Aggregation failed: {e}")
            raise AggregationError(f"Failed to merge tool results: {e}") from e

    def _merge(self, tool_results: Mapping[str, ToolRun], severity_threshold: Severity) -> AggregatedReport:
        merged: Dict[Tuple[str, int, str], Finding] = {}
        reporters: Dict[Tuple[str, int, str], List[str]] = {}
        order = self._tool_order(tool_results)

        # Walking tools in priority order makes the first instance seen the one kept.
        for name in order:
            run = tool_results[name]
            if not run.succeeded:
                continue
            for finding in run.findings:
                if finding.severity.rank < severity_threshold.rank:
                    continue
                key = dedup_key(finding)
                if key not in merged:
                    merged[key] = finding
                    reporters[key] = []
                if finding.tool not in reporters[key]:
                    reporters[key].append(finding.tool)

        findings = tuple(
            finding.model_copy(update={"reported_by": tuple(reporters[key])})
            for key, finding in merged.items()
        )
        summary = summarize(findings)
        tools = tuple(
            ToolStatus(
                name=name,
                success=tool_results[name].succeeded,
                finding_count=len(tool_results[name].findings),
                execution_time=round(tool_results[name].execution_time, 3),
                error=tool_results[name].error,
                error_kind=tool_results[name].error_kind,
            )
            for name in order
        )
        return AggregatedReport(
            findings=findings,
            summary=summary,
            score=self.weights.score(summary),
            tools=tools,
        )


def summarize(findings: Sequence[Finding]) -> SeveritySummary:
    by_severity = Counter(f.severity for f in findings)
    return SeveritySummary(
        high=by_severity[Severity.HIGH],
        medium=by_severity[Severity.MEDIUM],
        low=by_severity[Severity.LOW],
        info=by_severity[Severity.INFO],
        total=len(findings),
        by_tool=dict(Counter(f.tool for f in findings)),
        by_category=dict(Counter(f.category or "general" for f in findings)),
    )
