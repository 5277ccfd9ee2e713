# src/scancore/tools/slither_adapter.py
import json
import os
from typing import List

from scancore.engine.errors import ToolExecutionError
from scancore.engine.findings import Finding, Severity
from .base import CommandToolAdapter

# detector check name prefix -> report category
SLITHER_CATEGORIES = {
    "reentrancy": "reentrancy",
    "arbitrary-send": "access-control",
    "suicidal": "access-control",
    "unprotected-upgrade": "access-control",
    "tx-origin": "access-control",
    "controlled-delegatecall": "unsafe-delegatecall",
    "delegatecall-loop": "unsafe-delegatecall",
    "unchecked": "unchecked-return",
    "timestamp": "timestamp",
    "weak-prng": "unsafe-randomness",
    "divide-before-multiply": "arithmetic",
    "incorrect-shift": "arithmetic",
    "tautology": "arithmetic",
}


def _category(check: str) -> str:
    for prefix, category in SLITHER_CATEGORIES.items():
        if check.startswith(prefix):
            return category
    return "general"


def _first_line(detector: dict) -> int:
    for element in detector.get("elements") or []:
        lines = (element.get("source_mapping") or {}).get("lines") or []
        if lines:
            return int(lines[0])
    return 0


def parse_slither_output(output: dict, file_name: str) -> List[Finding]:
    findings = []
    detectors = ((output or {}).get("results") or {}).get("detectors") or []
    for detector in detectors:
        check = detector.get("check") or "unknown"
        description = (detector.get("description") or "").strip()
        findings.append(Finding(
            tool="slither",
            severity=Severity.parse(detector.get("impact")),
            title=check.replace("-", " ").title(),
            description=description or check,
            file_path=file_name,
            line=_first_line(detector),
            category=_category(check),
        ))
    return findings


class SlitherAdapter(CommandToolAdapter):
    name = "slither"

    def run_scan(self, target, timeout, cancel_event=None) -> List[Finding]:
        # slither exits non-zero whenever a detector fires, so the JSON body decides success
        returncode, stdout, stderr = self._run_command(
            ["slither", target, "--json", "-"], timeout, cancel_event,
            cwd=os.path.dirname(os.path.abspath(target)),
        )
        try:
            output = json.loads(stdout)
        except json.JSONDecodeError:
            raise ToolExecutionError(self.name, f"Failed to parse Slither output as JSON (exit {returncode}): {stderr.strip()[:500]}")
        if not output.get("success", False):
            raise ToolExecutionError(self.name, output.get("error") or stderr.strip()[:500] or "analysis failed")
        return parse_slither_output(output, os.path.basename(target))
