# src/scancore/tools/mythril_adapter.py
"""
Mythril runs from its published container image through the Docker SDK. The
contract's directory is mounted read-only; the container is killed on timeout
or cancellation and always removed afterwards.
"""
import json
import logging
import os
import time
from typing import List

import docker
from docker.errors import DockerException

from scancore.engine.errors import ToolExecutionError, ToolTimeout
from scancore.engine.findings import Finding, Severity
from .base import CANCEL_POLL_INTERVAL, SecurityToolAdapter

DEFAULT_MYTHRIL_IMAGE = "mythril/myth:latest"

SWC_CATEGORIES = {
    "107": "reentrancy",
    "101": "arithmetic",
    "105": "access-control",
    "106": "access-control",
    "115": "access-control",
    "104": "unchecked-return",
    "112": "unsafe-delegatecall",
    "116": "timestamp",
    "120": "unsafe-randomness",
}


def parse_mythril_output(output: dict, file_name: str) -> List[Finding]:
    findings = []
    for issue in (output or {}).get("issues") or []:
        swc_id = str(issue.get("swc-id") or issue.get("swc_id") or "")
        findings.append(Finding(
            tool="mythril",
            severity=Severity.parse(issue.get("severity")),
            title=issue.get("title") or f"SWC-{swc_id}",
            description=issue.get("description") or issue.get("long_description") or "",
            file_path=file_name,
            line=int(issue.get("lineno") or issue.get("line") or 0),
            recommendation=issue.get("recommendation") or "",
            category=SWC_CATEGORIES.get(swc_id, "general"),
        ))
    return findings


class MythrilAdapter(SecurityToolAdapter):
    name = "mythril"

    def __init__(self, image: str = DEFAULT_MYTHRIL_IMAGE, client=None):
        self.image = image
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def run_scan(self, target, timeout, cancel_event=None) -> List[Finding]:
        directory, file_name = os.path.split(os.path.abspath(target))
        try:
            container = self.client.containers.run(
                self.image,
                ["analyze", f"/src/{file_name}", "-o", "json"],
                volumes={directory: {"bind": "/src", "mode": "ro"}},
                detach=True,
            )
        except DockerException as e:
            raise ToolExecutionError(self.name, f"Failed to start Mythril container: {e}")

        try:
            deadline = time.monotonic() + timeout
            while True:
                container.reload()
                if container.status in ("exited", "dead"):
                    break
                if cancel_event is not None and cancel_event.is_set():
                    container.kill()
                    raise ToolExecutionError(self.name, "cancelled")
                if time.monotonic() >= deadline:
                    container.kill()
                    raise ToolTimeout(self.name, f"timed out after {timeout}s")
                time.sleep(CANCEL_POLL_INTERVAL)
            stdout = container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
        except DockerException as e:
            raise ToolExecutionError(self.name, str(e))
        finally:
            try:
                container.remove(force=True)
            except DockerException as e:
                logging.warning(f"Failed to remove Mythril container: {e}")

        try:
            output = json.loads(stdout)
        except json.JSONDecodeError:
            raise ToolExecutionError(self.name, "Failed to parse Mythril output as JSON.")
        if output.get("success") is False:
            raise ToolExecutionError(self.name, output.get("error") or "analysis failed")
        return parse_mythril_output(output, file_name)
