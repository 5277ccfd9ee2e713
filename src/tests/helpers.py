import threading
import time

from scancore.engine.errors import ToolExecutionError
from scancore.engine.findings import Finding, Severity
from scancore.tools.base import SecurityToolAdapter

SAMPLE_CONTRACT = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.19;

contract Vault {
    mapping(address => uint256) public balances;

    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
    }
}
"""


def make_finding(tool, severity=Severity.HIGH, title="Reentrancy", line=7,
                 file_path="Contract.sol", category="general"):
    return Finding(tool=tool, severity=severity, title=title, description=f"{title} found by {tool}",
                   file_path=file_path, line=line, category=category)


def wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class StaticAdapter(SecurityToolAdapter):
    """Returns canned findings, optionally after a delay."""

    def __init__(self, name, findings=(), delay=0.0):
        self.name = name
        self.findings = list(findings)
        self.delay = delay
        self.targets = []

    def run_scan(self, target, timeout, cancel_event=None):
        self.targets.append(target)
        if self.delay and cancel_event is not None and cancel_event.wait(self.delay):
            raise ToolExecutionError(self.name, "cancelled")
        if self.delay and cancel_event is None:
            time.sleep(self.delay)
        return list(self.findings)


class FailingAdapter(SecurityToolAdapter):
    def __init__(self, name, message="analysis failed"):
        self.name = name
        self.message = message

    def run_scan(self, target, timeout, cancel_event=None):
        raise ToolExecutionError(self.name, self.message)


class ContentAdapter(SecurityToolAdapter):
    """Fails on sources containing FAIL, holds on HOLD until released, otherwise reports one medium finding."""

    def __init__(self, name="content", delay=0.0):
        self.name = name
        self.delay = delay
        self.release = threading.Event()

    def run_scan(self, target, timeout, cancel_event=None):
        if self.delay:
            time.sleep(self.delay)
        with open(target, "r", encoding="utf-8") as f:
            source = f.read()
        if "HOLD" in source:
            self.release.wait(10)
        if "FAIL" in source:
            raise ToolExecutionError(self.name, "compilation failed")
        return [make_finding(self.name, Severity.MEDIUM, "Unchecked Call", line=3)]


class HangingAdapter(SecurityToolAdapter):
    """Blocks until released or cancelled."""

    def __init__(self, name="hang"):
        self.name = name
        self.started = threading.Event()
        self.release = threading.Event()

    def run_scan(self, target, timeout, cancel_event=None):
        self.started.set()
        deadline = time.monotonic() + 10
        while not self.release.is_set() and time.monotonic() < deadline:
            if cancel_event is not None and cancel_event.is_set():
                raise ToolExecutionError(self.name, "cancelled")
            time.sleep(0.01)
        return []


class CountingAdapter(SecurityToolAdapter):
    """Tracks how many runs sharing one counter are in flight at once."""

    def __init__(self, name, counter, delay=0.05):
        self.name = name
        self.counter = counter
        self.delay = delay

    def run_scan(self, target, timeout, cancel_event=None):
        self.counter.enter()
        try:
            time.sleep(self.delay)
        finally:
            self.counter.leave()
        return []


class ConcurrencyCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.runs = 0

    def enter(self):
        with self._lock:
            self.active += 1
            self.runs += 1
            self.peak = max(self.peak, self.active)

    def leave(self):
        with self._lock:
            self.active -= 1
