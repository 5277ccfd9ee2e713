# src/scancore/tools/pattern_adapter.py
"""
PatternRuleAdapter: regex rules matched line by line against the contract source.
Runs in-process, so it is always available even when no external analyser is installed.
"""
import os
import re
import time
from dataclasses import dataclass
from typing import List, Optional

import yaml

from scancore.engine.errors import ToolExecutionError, ToolTimeout
from scancore.engine.findings import Finding, Severity
from .base import SecurityToolAdapter

BUILTIN_RULES_PATH = os.path.join(os.path.dirname(__file__), "rules.yaml")

COMMENT_PREFIXES = ("//", "/*", "*")


@dataclass(frozen=True)
class PatternRule:
    id: str
    name: str
    regex: re.Pattern
    severity: Severity
    category: str
    description: str = ""
    remediation: str = ""


def load_rules(path: str = BUILTIN_RULES_PATH) -> List[PatternRule]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    rules = []
    for entry in data.get("rules") or []:
        if entry.get("enabled", True) is False:
            continue
        try:
            pattern = re.compile(entry["regex"])
        except (KeyError, re.error) as e:
            raise ValueError(f"Invalid pattern rule {entry.get('id', '?')}: {e}")
        rules.append(PatternRule(
            id=str(entry.get("id") or entry["name"]),
            name=entry["name"],
            regex=pattern,
            severity=Severity.parse(entry.get("severity")),
            category=entry.get("category") or "general",
            description=entry.get("description") or "",
            remediation=entry.get("remediation") or "",
        ))
    return rules


class PatternRuleAdapter(SecurityToolAdapter):
    name = "patterns"

    def __init__(self, rules: Optional[List[PatternRule]] = None, rules_path: Optional[str] = None):
        self.rules = rules if rules is not None else load_rules(rules_path or BUILTIN_RULES_PATH)

    def run_scan(self, target, timeout, cancel_event=None) -> List[Finding]:
        try:
            with open(target, "r", encoding="utf-8", errors="replace") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise ToolExecutionError(self.name, str(e))

        file_name = os.path.basename(target)
        deadline = time.monotonic() + timeout
        findings = []
        for number, line in enumerate(lines, start=1):
            if number % 500 == 0:
                if time.monotonic() >= deadline:
                    raise ToolTimeout(self.name, f"timed out after {timeout}s")
                if cancel_event is not None and cancel_event.is_set():
                    raise ToolExecutionError(self.name, "cancelled")
            stripped = line.strip()
            if not stripped or stripped.startswith(COMMENT_PREFIXES):
                continue
            for rule in self.rules:
                if rule.regex.search(line):
                    findings.append(Finding(
                        tool=self.name,
                        severity=rule.severity,
                        title=rule.name,
                        description=rule.description or stripped,
                        file_path=file_name,
                        line=number,
                        recommendation=rule.remediation,
                        category=rule.category,
                    ))
        return findings
