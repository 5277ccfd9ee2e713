# src/scancore/tools/base.py
import logging
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from scancore.engine.errors import ToolExecutionError, ToolTimeout
from scancore.engine.findings import Finding

CANCEL_POLL_INTERVAL = 0.2


class SecurityToolAdapter(ABC):
    name = "tool"

    @abstractmethod
    def run_scan(self, target: str, timeout: float,
                 cancel_event: Optional[threading.Event] = None) -> List[Finding]:
        """
        Analyse the contract at ``target`` and return raw findings.
        Raises ToolTimeout once ``timeout`` seconds pass, ToolExecutionError otherwise.
        Implementations should stop early when ``cancel_event`` is set.
        """
        pass


class CommandToolAdapter(SecurityToolAdapter):
    """Adapter for tools driven through a local CLI."""

    def _run_command(self, cmd: Sequence[str], timeout: float,
                     cancel_event: Optional[threading.Event] = None,
                     cwd: Optional[str] = None) -> Tuple[int, str, str]:
        try:
            proc = subprocess.Popen(
                list(cmd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=cwd,
            )
        except FileNotFoundError:
            raise ToolExecutionError(self.name, f"executable not found: {cmd[0]}")
        except OSError as e:
            raise ToolExecutionError(self.name, str(e))

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill(proc)
                raise ToolTimeout(self.name, f"timed out after {timeout}s")
            if cancel_event is not None and cancel_event.is_set():
                self._kill(proc)
                raise ToolExecutionError(self.name, "cancelled")
            try:
                stdout, stderr = proc.communicate(timeout=min(CANCEL_POLL_INTERVAL, remaining))
                return proc.returncode, stdout, stderr
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill(proc: subprocess.Popen):
        proc.kill()
        try:
            proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            logging.warning(f"Process {proc.pid} did not exit after kill")
