import pytest

from scancore.engine.aggregator import ResultAggregator, ScoreWeights, normalize_title
from scancore.engine.enricher import HeuristicEnricher, enrich_report, overall_risk_level
from scancore.engine.errors import AllToolsFailed
from scancore.engine.findings import Severity
from scancore.engine.states import ToolRun

from tests.helpers import make_finding


def test_duplicate_findings_are_merged_and_scored():
    slither = ToolRun(tool="slither", findings=(
        make_finding("slither", Severity.HIGH, "Reentrancy", line=7),
        make_finding("slither", Severity.HIGH, "Arbitrary Send", line=12),
    ))
    mythril = ToolRun(tool="mythril", findings=(
        make_finding("mythril", Severity.HIGH, "  reentrancy ", line=7),
        make_finding("mythril", Severity.MEDIUM, "Unchecked Call", line=9),
    ))

    report = ResultAggregator().merge({"mythril": mythril, "slither": slither})

    assert report.summary.total == 3
    assert report.summary.high == 2
    assert report.summary.medium == 1
    assert report.score == 50
    reentrancy = [f for f in report.findings if normalize_title(f.title) == "reentrancy"]
    assert len(reentrancy) == 1
    # the higher priority tool's instance is the one kept
    assert reentrancy[0].tool == "slither"
    assert reentrancy[0].reported_by == ("slither", "mythril")


def test_same_title_on_different_lines_is_kept():
    run = ToolRun(tool="patterns", findings=(
        make_finding("patterns", Severity.LOW, "Timestamp Dependence", line=3),
        make_finding("patterns", Severity.LOW, "Timestamp Dependence", line=8),
    ))
    report = ResultAggregator().merge({"patterns": run})
    assert report.summary.low == 2
    assert report.score == 100


def test_score_is_floored_at_zero():
    run = ToolRun(tool="slither", findings=tuple(
        make_finding("slither", Severity.HIGH, f"Issue {i}", line=i) for i in range(6)
    ))
    assert ResultAggregator().merge({"slither": run}).score == 0


def test_custom_weights():
    run = ToolRun(tool="slither", findings=(
        make_finding("slither", Severity.MEDIUM, "A", line=1),
        make_finding("slither", Severity.LOW, "B", line=2),
    ))
    aggregator = ResultAggregator(weights=ScoreWeights(high=30, medium=5, low=1))
    assert aggregator.merge({"slither": run}).score == 94


def test_failed_tools_are_reported_but_not_counted():
    ok = ToolRun(tool="patterns", findings=(make_finding("patterns", Severity.MEDIUM, "Inline Assembly"),))
    broken = ToolRun(tool="mythril", error="docker unavailable", error_kind="error")

    report = ResultAggregator().merge({"patterns": ok, "mythril": broken})

    assert report.summary.total == 1
    statuses = {t.name: t for t in report.tools}
    assert statuses["mythril"].success is False
    assert statuses["mythril"].error == "docker unavailable"
    assert statuses["patterns"].finding_count == 1


def test_all_tools_failed_raises():
    runs = {
        "slither": ToolRun(tool="slither", error="boom", error_kind="error"),
        "mythril": ToolRun(tool="mythril", error="timed out", error_kind="timeout"),
    }
    with pytest.raises(AllToolsFailed):
        ResultAggregator().merge(runs)
    with pytest.raises(AllToolsFailed):
        ResultAggregator().merge({})


def test_severity_threshold_filters_findings():
    run = ToolRun(tool="patterns", findings=(
        make_finding("patterns", Severity.INFO, "Floating Pragma", line=1),
        make_finding("patterns", Severity.HIGH, "Unsafe Delegatecall", line=5),
    ))
    report = ResultAggregator().merge({"patterns": run}, severity_threshold=Severity.MEDIUM)
    assert [f.title for f in report.findings] == ["Unsafe Delegatecall"]


def test_enrichment_uses_tool_agreement_and_category():
    slither = ToolRun(tool="slither", findings=(
        make_finding("slither", Severity.HIGH, "Reentrancy", category="reentrancy"),
    ))
    mythril = ToolRun(tool="mythril", findings=(
        make_finding("mythril", Severity.HIGH, "Reentrancy", category="reentrancy"),
    ))
    report = enrich_report(ResultAggregator().merge({"slither": slither, "mythril": mythril}), HeuristicEnricher())

    finding = report.findings[0]
    assert report.enriched is True
    assert finding.confidence == 0.8
    assert finding.risk_score == 95
    assert "reentrancy" in finding.recommendation.lower()
    assert report.risk_level == "high"
    assert "Implement comprehensive reentrancy protection" in report.recommendations
    # enrichment never changes the score
    assert report.score == 80


def test_overall_risk_level():
    highs = [make_finding("slither", Severity.HIGH, f"H{i}", line=i) for i in range(3)]
    assert overall_risk_level(highs) == "critical"
    assert overall_risk_level([make_finding("slither", Severity.MEDIUM)]) == "medium"
    assert overall_risk_level([]) == "low"
