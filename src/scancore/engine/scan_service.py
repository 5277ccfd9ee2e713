# src/scancore/engine/scan_service.py
"""
ScanService: submission, execution, polling and cancellation of single-source scan jobs.

submit() stores a Pending job and hands it to a worker thread; it never waits for
tool execution. The worker fans every tool out to a shared, bounded tool pool
(runs queue once ``max_concurrent_tool_runs`` are busy), records each tool's
outcome as it arrives, then aggregates and enriches into one report. A slow or
broken tool only ever produces an error marker for itself; job level failures
land in the job's Failed state and never escape the worker.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

from scancore.engine.aggregator import ResultAggregator
from scancore.engine.enricher import Enricher, enrich_report
from scancore.engine.errors import (
    CancelOutcome,
    InvalidInput,
    ScanError,
    ToolError,
    ToolTimeout,
)
from scancore.engine.job_manager import ScanJobRegistry
from scancore.engine.source import SourceRef
from scancore.engine.states import JobSnapshot, ScanConfig, ScanJob, ToolRun
from scancore.tools.registry import ToolRegistry, ToolSpec

DEFAULT_NETWORK = "ethereum"


class ScanService:
    def __init__(self, registry: ScanJobRegistry, tools: ToolRegistry,
                 aggregator: Optional[ResultAggregator] = None,
                 enricher: Optional[Enricher] = None,
                 default_tools: Sequence[str] = (),
                 max_concurrent_tool_runs: int = 4,
                 poll_interval: float = 0.1):
        self.registry = registry
        self.tools = tools
        self.aggregator = aggregator or ResultAggregator()
        self.enricher = enricher
        self.default_tools = tuple(default_tools) or tuple(tools.names())
        self.poll_interval = poll_interval
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_tool_runs,
                                            thread_name_prefix="tool-run")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def resolve_tools(self, requested: Optional[Sequence[str]]) -> tuple:
        names = list(requested) if requested is not None else list(self.default_tools)
        names = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
        if not names:
            raise InvalidInput("At least one security tool is required")
        for name in names:
            self.tools.get(name)
        return tuple(names)

    def create(self, source: SourceRef, network: str = DEFAULT_NETWORK, owner_id: Optional[str] = None,
               tools: Optional[Sequence[str]] = None, config: Optional[ScanConfig] = None) -> str:
        """Validate and register a Pending job without starting it."""
        if source is None:
            raise InvalidInput("No contract source provided")
        source.validate()
        config = config or ScanConfig()
        if tools is None and config.tools:
            tools = config.tools
        job = ScanJob(
            id=str(uuid.uuid4()),
            source=source,
            network=network or DEFAULT_NETWORK,
            tools=self.resolve_tools(tools),
            config=config,
            owner_id=owner_id,
        )
        self.registry.put(job)
        return job.id

    def start(self, job_id: str):
        thread = threading.Thread(target=self._run_job, args=(job_id,),
                                  name=f"scan-{job_id[:8]}", daemon=True)
        thread.start()

    def submit(self, source: SourceRef, network: str = DEFAULT_NETWORK, owner_id: Optional[str] = None,
               tools: Optional[Sequence[str]] = None, config: Optional[ScanConfig] = None) -> str:
        job_id = self.create(source, network=network, owner_id=owner_id, tools=tools, config=config)
        logging.info(f"[job_id={job_id}] Submitted scan job. owner={owner_id} network={network}")
        self.start(job_id)
        return job_id

    # ------------------------------------------------------------------
    # Read / cancel
    # ------------------------------------------------------------------

    def get_status(self, job_id: str) -> JobSnapshot:
        return self.registry.snapshot(job_id)

    def cancel(self, job_id: str) -> CancelOutcome:
        if self.registry.mutate(job_id, lambda job: job.cancel()):
            logging.info(f"[job_id={job_id}] Scan job cancelled.")
            return CancelOutcome.CANCELLED
        return CancelOutcome.ALREADY_TERMINAL

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait, cancel_futures=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run_job(self, job_id: str):
        job = self.registry.get(job_id)
        inflight: List[Future] = []
        try:
            self._execute(job, inflight)
        except Exception as e:
            kind = e.kind if isinstance(e, ScanError) else "internal"
            if self.registry.mutate(job_id, lambda j: j.fail(str(e), kind)):
                logging.error(f"[job_id={job_id}] Scan job failed: {e}")
        finally:
            self._release_source(job, inflight)

    def _execute(self, job: ScanJob, inflight: List[Future]):
        if not self.registry.mutate(job.id, lambda j: j.start()):
            logging.info(f"[job_id={job.id}] Job no longer pending, not starting.")
            return
        logging.info(f"[job_id={job.id}] Started scan job.")

        target = job.source.materialize()
        started: Dict[str, float] = {}
        futures: Dict[Future, ToolSpec] = {}
        for name in job.tools:
            spec = self.tools.get(name)
            future = self._executor.submit(self._run_tool, spec, target, job.cancel_event, started)
            futures[future] = spec
            inflight.append(future)

        if not self._collect(job, futures, started):
            for future in futures:
                future.cancel()
            logging.info(f"[job_id={job.id}] Discarding in-flight tool runs after cancellation.")
            return

        with job.lock:
            tool_results = dict(job.tool_results)
        report = self.aggregator.merge(tool_results, job.config.severity_threshold)
        if job.config.ai_analysis and self.enricher is not None:
            report = enrich_report(report, self.enricher)

        if self.registry.mutate(job.id, lambda j: j.complete(report)):
            logging.info(f"[job_id={job.id}] Completed scan job. score={report.score} "
                         f"findings={report.summary.total}")

    def _collect(self, job: ScanJob, futures: Dict[Future, ToolSpec], started: Dict[str, float]) -> bool:
        """Record tool outcomes as they arrive. Returns False once the job stops accepting them."""
        pending = set(futures)
        while pending:
            if job.cancel_event.is_set():
                return False
            now = time.monotonic()
            wait_for = self.poll_interval
            for future in pending:
                spec = futures[future]
                if spec.name in started:
                    wait_for = min(wait_for, max(0.0, started[spec.name] + spec.timeout - now))
            done, _ = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)

            for future in done:
                pending.discard(future)
                if not self._record(job, future.result()):
                    return False

            now = time.monotonic()
            for future in list(pending):
                spec = futures[future]
                begun = started.get(spec.name)
                if begun is not None and now - begun >= spec.timeout:
                    pending.discard(future)
                    future.cancel()
                    logging.warning(f"[job_id={job.id}] Tool {spec.name} timed out after {spec.timeout}s")
                    run = ToolRun(tool=spec.name, error=f"timed out after {spec.timeout}s",
                                  error_kind=ToolTimeout.kind, execution_time=now - begun)
                    if not self._record(job, run):
                        return False
        return True

    def _record(self, job: ScanJob, run: ToolRun) -> bool:
        recorded = self.registry.mutate(job.id, lambda j: j.record_tool(run))
        if recorded and run.error:
            logging.warning(f"[job_id={job.id}] Tool {run.tool} failed ({run.error_kind}): {run.error}")
        return recorded

    def _run_tool(self, spec: ToolSpec, target: str, cancel_event: threading.Event,
                  started: Dict[str, float]) -> ToolRun:
        begun = time.monotonic()
        started[spec.name] = begun
        try:
            if cancel_event.is_set():
                return ToolRun(tool=spec.name, error="cancelled", error_kind="cancelled")
            findings = spec.adapter.run_scan(target, spec.timeout, cancel_event)
            return ToolRun(tool=spec.name, findings=tuple(findings),
                           execution_time=time.monotonic() - begun)
        except ToolError as e:
            return ToolRun(tool=spec.name, error=e.message, error_kind=e.kind,
                           execution_time=time.monotonic() - begun)
        except Exception as e:
            return ToolRun(tool=spec.name, error=str(e) or e.__class__.__name__, error_kind="error",
                           execution_time=time.monotonic() - begun)

    def _release_source(self, job: ScanJob, inflight: List[Future]):
        """Clean up the job's source once no tool run can still be reading it."""
        remaining = [f for f in inflight if not f.done()]
        if not remaining:
            job.source.cleanup()
            return
        counter = {"left": len(remaining)}
        lock = threading.Lock()

        def _on_done(_future):
            with lock:
                counter["left"] -= 1
                last = counter["left"] == 0
            if last:
                job.source.cleanup()

        for future in remaining:
            future.add_done_callback(_on_done)
