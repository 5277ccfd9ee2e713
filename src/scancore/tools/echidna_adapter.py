# src/scancore/tools/echidna_adapter.py
import os
import tempfile
from typing import List

import yaml

from scancore.engine.errors import ToolExecutionError
from scancore.engine.findings import Finding, Severity
from .base import CommandToolAdapter
from .manticore_adapter import extract_line_number

DEFAULT_ECHIDNA_CONFIG = {
    "testMode": "property",
    "testLimit": 50000,
    "seqLen": 100,
    "deployer": "0x10000",
    "sender": ["0x10000", "0x20000"],
    "psender": "0x10000",
}


def parse_echidna_output(output: str, file_name: str) -> List[Finding]:
    findings = []
    for raw in (output or "").splitlines():
        line = raw.strip()
        if "CRASH" in line:
            severity, title, category = Severity.HIGH, "Property Violation - Crash", "property-violation"
        elif "FAILED" in line or "failed!" in line:
            severity, title, category = Severity.HIGH, "Property Violation - Failed", "property-violation"
        elif "Assertion failed" in line:
            severity, title, category = Severity.MEDIUM, "Assertion Failure", "assertion-failure"
        else:
            continue
        findings.append(Finding(
            tool="echidna",
            severity=severity,
            title=title,
            description=line,
            file_path=file_name,
            line=extract_line_number(line),
            recommendation="Review property violations and strengthen invariants.",
            category=category,
        ))
    return findings


class EchidnaAdapter(CommandToolAdapter):
    name = "echidna"

    def __init__(self, config: dict = None):
        self.config = dict(DEFAULT_ECHIDNA_CONFIG, **(config or {}))

    def run_scan(self, target, timeout, cancel_event=None) -> List[Finding]:
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="echidna_", delete=False) as cfg:
            yaml.safe_dump(self.config, cfg)
            config_path = cfg.name
        try:
            # echidna exits 1 when a property fails; only a silent non-zero exit is an error
            returncode, stdout, stderr = self._run_command(
                ["echidna", target, "--config", config_path, "--format", "text"],
                timeout, cancel_event,
            )
            if returncode != 0 and not stdout.strip():
                raise ToolExecutionError(self.name, stderr.strip()[:500] or f"exited with code {returncode}")
            return parse_echidna_output(stdout, os.path.basename(target))
        finally:
            if os.path.exists(config_path):
                os.remove(config_path)
