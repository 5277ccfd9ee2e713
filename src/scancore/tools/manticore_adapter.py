# src/scancore/tools/manticore_adapter.py
import os
import re
import shutil
import tempfile
from typing import List

from scancore.engine.errors import ToolExecutionError
from scancore.engine.findings import Finding, Severity
from .base import CommandToolAdapter

LINE_NUMBER = re.compile(r"line\s*(\d+)", re.IGNORECASE)


def extract_line_number(text: str) -> int:
    match = LINE_NUMBER.search(text)
    return int(match.group(1)) if match else 0


def _manticore_category(text: str) -> str:
    lowered = text.lower()
    if "reentrancy" in lowered:
        return "reentrancy"
    if "overflow" in lowered or "underflow" in lowered:
        return "arithmetic"
    if "access" in lowered:
        return "access-control"
    return "symbolic-execution"


def parse_manticore_output(output: str, file_name: str) -> List[Finding]:
    findings = []
    for raw in (output or "").splitlines():
        line = raw.strip()
        if "Vulnerability" in line or "CRITICAL" in line:
            severity, title = Severity.HIGH, "Symbolic Execution Vulnerability"
        elif "Warning" in line:
            severity, title = Severity.MEDIUM, "Symbolic Execution Warning"
        elif "Error" in line:
            severity, title = Severity.LOW, "Symbolic Execution Issue"
        else:
            continue
        findings.append(Finding(
            tool="manticore",
            severity=severity,
            title=title,
            description=line,
            file_path=file_name,
            line=extract_line_number(line),
            recommendation="Review symbolic execution paths and implement proper guards.",
            category=_manticore_category(line),
        ))
    return findings


class ManticoreAdapter(CommandToolAdapter):
    name = "manticore"

    def run_scan(self, target, timeout, cancel_event=None) -> List[Finding]:
        workspace = tempfile.mkdtemp(prefix="manticore_")
        try:
            returncode, stdout, stderr = self._run_command(
                ["manticore", target, "--workspace", workspace, "--no-colors"],
                timeout, cancel_event,
            )
            if returncode != 0:
                raise ToolExecutionError(self.name, stderr.strip()[:500] or f"exited with code {returncode}")
            return parse_manticore_output(stdout, os.path.basename(target))
        finally:
            shutil.rmtree(workspace, ignore_errors=True)
