# src/scancore/engine/enricher.py
"""
Enrichment pass over an aggregated report: confidence, risk score and
remediation text per finding, plus an overall risk level and recommendations.

HeuristicEnricher is the built-in, deterministic implementation. Any other
analysis backend plugs in by implementing Enricher.analyze.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from scancore.engine.findings import AggregatedReport, Finding, Severity


@dataclass(frozen=True)
class Enrichment:
    confidence: float
    risk_score: int
    remediation: str


class Enricher(ABC):
    @abstractmethod
    def analyze(self, finding: Finding) -> Enrichment:
        pass

    def recommendations(self, findings: Sequence[Finding]) -> List[str]:
        return []


SEVERITY_BASE_RISK = {
    Severity.HIGH: 80,
    Severity.MEDIUM: 50,
    Severity.LOW: 20,
    Severity.INFO: 0,
}

CATEGORY_RISK_BONUS = {
    "reentrancy": 15,
    "arithmetic": 10,
    "access-control": 12,
}

CATEGORY_REMEDIATION = {
    "reentrancy": "Use reentrancy guards (e.g. OpenZeppelin ReentrancyGuard) and follow the "
                  "checks-effects-interactions pattern.",
    "arithmetic": "Use checked arithmetic (Solidity 0.8+ or SafeMath) and validate input parameters.",
    "access-control": "Restrict privileged functions with explicit access control modifiers "
                      "(e.g. OpenZeppelin AccessControl).",
    "unchecked-return": "Check the return value of every low-level call and handle failures.",
    "unsafe-delegatecall": "Only delegatecall into trusted, immutable targets behind access control.",
    "unsafe-randomness": "Do not derive randomness from block attributes; use a verifiable source such as Chainlink VRF.",
    "timestamp": "Avoid block.timestamp for critical logic; tolerate miner drift of several seconds.",
}

DEFAULT_REMEDIATION = "Review and fix the identified issue."


class HeuristicEnricher(Enricher):
    """Rule-based risk scoring: severity base plus category bonus, confidence from tool agreement."""

    def analyze(self, finding: Finding) -> Enrichment:
        risk = SEVERITY_BASE_RISK[finding.severity] + CATEGORY_RISK_BONUS.get(finding.category, 0)
        reporters = max(1, len(finding.reported_by))
        confidence = min(0.95, 0.7 + 0.1 * (reporters - 1))
        remediation = finding.recommendation or CATEGORY_REMEDIATION.get(finding.category, DEFAULT_REMEDIATION)
        return Enrichment(confidence=round(confidence, 2), risk_score=min(risk, 100), remediation=remediation)

    def recommendations(self, findings: Sequence[Finding]) -> List[str]:
        recommendations = []
        high_count = sum(1 for f in findings if f.severity == Severity.HIGH)
        if high_count:
            recommendations.append(f"Address {high_count} high-severity vulnerabilities immediately")
        if any(f.category == "reentrancy" for f in findings):
            recommendations.append("Implement comprehensive reentrancy protection")
        if any(f.category == "arithmetic" for f in findings):
            recommendations.append("Use SafeMath or upgrade to Solidity 0.8+ for arithmetic operations")
        recommendations.append("Conduct thorough security audit before deployment")
        recommendations.append("Implement automated security testing in CI/CD pipeline")
        return recommendations


def overall_risk_level(findings: Sequence[Finding]) -> str:
    high = sum(1 for f in findings if f.severity == Severity.HIGH)
    medium = sum(1 for f in findings if f.severity == Severity.MEDIUM)
    if high > 2:
        return "critical"
    if high > 0 or medium > 3:
        return "high"
    if medium > 0:
        return "medium"
    return "low"


def enrich_report(report: AggregatedReport, enricher: Optional[Enricher]) -> AggregatedReport:
    if enricher is None:
        return report
    findings = []
    for finding in report.findings:
        try:
            enrichment = enricher.analyze(finding)
        except Exception as e:
            logging.warning(f"Enrichment failed for finding '{finding.title}' ({finding.tool}): {e}")
            findings.append(finding)
            continue
        findings.append(finding.model_copy(update={
            "confidence": enrichment.confidence,
            "risk_score": enrichment.risk_score,
            "recommendation": enrichment.remediation,
        }))
    try:
        recommendations = tuple(enricher.recommendations(findings))
    except Exception as e:
        logging.warning(f"Enricher recommendations failed: {e}")
        recommendations = ()
    return report.model_copy(update={
        "findings": tuple(findings),
        "risk_level": overall_risk_level(findings),
        "recommendations": recommendations,
        "enriched": True,
    })
