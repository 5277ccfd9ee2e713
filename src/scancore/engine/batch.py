# src/scancore/engine/batch.py
"""
BatchScanCoordinator: fans N contract sources out into N child scan jobs under one
batch id and derives the batch's status and progress from its children.

A batch references its children by id only; the ScanJobRegistry owns them. The
child id list is fixed when the batch is created. Counts are recomputed from the
children on every read and whenever a child reaches a terminal state, and never
decrease. Once a batch is terminal it is frozen.

Lock order is batch lock, then job lock. The batch lock is re-entrant because
cancelling a child fires the terminal callback on the cancelling thread.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from scancore.engine.enricher import HeuristicEnricher
from scancore.engine.errors import CancelOutcome, InvalidInput, NotFound, PermissionDenied
from scancore.engine.scan_service import ScanService
from scancore.engine.source import SourceRef
from scancore.engine.states import BatchConfig, JobSnapshot, ScanStatus, now_utc
from scancore.engine.store import ScanHistoryStore
from scancore.utils import export_utils

CANCELLED_BY_USER = "Cancelled by user"


class BatchStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


@dataclass(frozen=True)
class BatchSnapshot:
    batch_id: str
    owner_id: str
    child_job_ids: Tuple[str, ...]
    status: BatchStatus
    processed_count: int
    failed_count: int
    config: BatchConfig
    start_time: datetime
    end_time: Optional[datetime]
    error: Optional[str]
    cancelled: bool

    @property
    def total(self) -> int:
        return len(self.child_job_ids)

    @property
    def progress(self) -> int:
        return (100 * self.processed_count) // self.total if self.total else 100

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "progress": self.progress,
            "total_files": self.total,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "child_job_ids": list(self.child_job_ids),
            "config": self.config.model_dump(mode="json"),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
            "cancelled": self.cancelled,
        }


@dataclass(eq=False)
class BatchJob:
    id: str
    owner_id: str
    child_job_ids: Tuple[str, ...]
    config: BatchConfig
    status: BatchStatus = BatchStatus.PENDING
    processed_count: int = 0
    failed_count: int = 0
    start_time: datetime = field(default_factory=now_utc)
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    cancelled: bool = False
    # last terminal snapshot of each child, kept past the registry retention sweep
    results: Dict[str, JobSnapshot] = field(default_factory=dict, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def snapshot(self) -> BatchSnapshot:
        return BatchSnapshot(
            batch_id=self.id,
            owner_id=self.owner_id,
            child_job_ids=self.child_job_ids,
            status=self.status,
            processed_count=self.processed_count,
            failed_count=self.failed_count,
            config=self.config,
            start_time=self.start_time,
            end_time=self.end_time,
            error=self.error,
            cancelled=self.cancelled,
        )


class BatchScanCoordinator:
    def __init__(self, scan_service: ScanService, store: Optional[ScanHistoryStore] = None,
                 fail_on_any_child: bool = True):
        self.scan_service = scan_service
        self.registry = scan_service.registry
        self.store = store
        self.fail_on_any_child = fail_on_any_child
        self._batches: Dict[str, BatchJob] = {}
        self._child_index: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.registry.add_terminal_listener(self._on_child_terminal)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def start_batch(self, sources: Sequence[SourceRef], owner_id: str,
                    config: Optional[BatchConfig] = None) -> str:
        if not owner_id:
            raise InvalidInput("A batch scan requires an owner")
        sources = list(sources or [])
        if not sources:
            raise InvalidInput("No files uploaded")
        config = config or BatchConfig()
        # validate everything before the first child exists, so a bad file creates nothing
        for source in sources:
            source.validate()
        tools = self.scan_service.resolve_tools(config.tools or None)

        batch_id = f"batch-{uuid.uuid4().hex}"
        child_ids = tuple(
            self.scan_service.create(source, network=config.network, owner_id=owner_id,
                                     tools=tools, config=config)
            for source in sources
        )
        batch = BatchJob(id=batch_id, owner_id=owner_id, child_job_ids=child_ids, config=config)
        with self._lock:
            self._batches[batch_id] = batch
            for child_id in child_ids:
                self._child_index[child_id] = batch_id
        with batch.lock:
            self._persist(batch)
        logging.info(f"[batch_id={batch_id}] Submitted batch scan. owner={owner_id} files={len(child_ids)} "
                     f"tools={list(tools)}")

        for child_id in child_ids:
            self.scan_service.start(child_id)
        with batch.lock:
            if batch.status == BatchStatus.PENDING:
                batch.status = BatchStatus.RUNNING
                self._persist(batch)
        self._refresh(batch)
        return batch_id

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _get(self, batch_id: str) -> BatchJob:
        with self._lock:
            batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFound(f"Batch job not found: {batch_id}")
        return batch

    def _check_owner(self, batch: BatchJob, owner_id: Optional[str]):
        if owner_id is not None and batch.owner_id != owner_id:
            raise PermissionDenied(f"Batch {batch.id} belongs to another user")

    def _child_snapshots(self, batch: BatchJob) -> List[Optional[JobSnapshot]]:
        snapshots = []
        with batch.lock:
            for child_id in batch.child_job_ids:
                try:
                    snap = self.registry.snapshot(child_id)
                except NotFound:
                    # evicted by a retention sweep; None only if it was never seen terminal
                    snapshots.append(batch.results.get(child_id))
                    continue
                if snap.is_terminal:
                    batch.results[child_id] = snap
                snapshots.append(snap)
        return snapshots

    def _refresh(self, batch: BatchJob) -> BatchSnapshot:
        with batch.lock:
            if batch.status.is_terminal:
                return batch.snapshot()
            processed = failed = 0
            for snap in self._child_snapshots(batch):
                if snap is None or snap.status in (ScanStatus.FAILED, ScanStatus.CANCELLED):
                    processed += 1
                    failed += 1
                elif snap.status == ScanStatus.COMPLETED:
                    processed += 1
            processed = max(processed, batch.processed_count)
            failed = max(failed, batch.failed_count)
            changed = (processed, failed) != (batch.processed_count, batch.failed_count)
            batch.processed_count, batch.failed_count = processed, failed

            total = len(batch.child_job_ids)
            if processed == total:
                batch_failed = failed > 0 if self.fail_on_any_child else failed == total
                batch.status = BatchStatus.FAILED if batch_failed else BatchStatus.COMPLETED
                batch.end_time = now_utc()
                if batch.cancelled:
                    batch.error = CANCELLED_BY_USER
                elif batch_failed:
                    batch.error = f"{failed} of {total} scans failed"
                changed = True
                logging.info(f"[batch_id={batch.id}] Batch scan finished. status={batch.status.value} "
                             f"processed={processed} failed={failed}")
            if changed:
                self._persist(batch)
            return batch.snapshot()

    def _on_child_terminal(self, snapshot: JobSnapshot):
        with self._lock:
            batch_id = self._child_index.get(snapshot.job_id)
            batch = self._batches.get(batch_id) if batch_id else None
        if batch is not None:
            with batch.lock:
                batch.results[snapshot.job_id] = snapshot
            self._refresh(batch)

    def get_batch_status(self, batch_id: str, owner_id: Optional[str] = None) -> BatchSnapshot:
        batch = self._get(batch_id)
        self._check_owner(batch, owner_id)
        return self._refresh(batch)

    def get_children(self, batch_id: str, owner_id: Optional[str] = None) -> List[JobSnapshot]:
        batch = self._get(batch_id)
        self._check_owner(batch, owner_id)
        return [snap for snap in self._child_snapshots(batch) if snap is not None]

    def list_batches(self, owner_id: str) -> List[BatchSnapshot]:
        with self._lock:
            batches = [b for b in self._batches.values() if b.owner_id == owner_id]
        snapshots = [self._refresh(b) for b in batches]
        return sorted(snapshots, key=lambda s: s.start_time, reverse=True)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_batch(self, batch_id: str, owner_id: str) -> CancelOutcome:
        batch = self._get(batch_id)
        if batch.owner_id != owner_id:
            raise PermissionDenied(f"Batch {batch_id} belongs to another user")
        with batch.lock:
            if batch.status.is_terminal:
                return CancelOutcome.ALREADY_TERMINAL
            batch.cancelled = True
            for snap in self._child_snapshots(batch):
                if snap is not None and not snap.is_terminal:
                    self.scan_service.cancel(snap.job_id)
            if not batch.status.is_terminal:
                self._refresh(batch)
            if not batch.status.is_terminal:
                batch.status = BatchStatus.FAILED
                batch.end_time = now_utc()
            batch.error = CANCELLED_BY_USER
            self._persist(batch)
        logging.info(f"[batch_id={batch_id}] Batch scan cancelled by owner {owner_id}.")
        return CancelOutcome.CANCELLED

    # ------------------------------------------------------------------
    # Summary / export
    # ------------------------------------------------------------------

    def _terminal_children(self, batch: BatchJob) -> List[JobSnapshot]:
        return [snap for snap in self._child_snapshots(batch) if snap is not None and snap.is_terminal]

    def get_summary(self, batch_id: str, owner_id: Optional[str] = None) -> Dict[str, Any]:
        batch = self._get(batch_id)
        self._check_owner(batch, owner_id)
        snapshot = self._refresh(batch)
        return build_batch_summary(snapshot, self._terminal_children(batch))

    def export_results(self, batch_id: str, fmt: str, owner_id: Optional[str] = None) -> bytes:
        fmt = (fmt or "").lower()
        if fmt not in export_utils.EXPORT_FORMATS:
            raise InvalidInput(f"Unsupported export format: {fmt}")
        batch = self._get(batch_id)
        self._check_owner(batch, owner_id)
        snapshot = self._refresh(batch)
        children = self._terminal_children(batch)
        summary = build_batch_summary(snapshot, children)
        entries = [export_utils.export_entry(child) for child in children]
        logging.info(f"[batch_id={batch_id}] Exporting {len(entries)}/{snapshot.total} results as {fmt}.")
        return export_utils.render_export(fmt, snapshot.to_dict(), entries, summary)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_terminal(self, older_than: timedelta) -> int:
        cutoff = now_utc() - older_than
        with self._lock:
            expired = [
                batch_id for batch_id, batch in self._batches.items()
                if batch.status.is_terminal and batch.end_time is not None and batch.end_time < cutoff
            ]
            for batch_id in expired:
                batch = self._batches.pop(batch_id)
                for child_id in batch.child_job_ids:
                    self._child_index.pop(child_id, None)
        return len(expired)

    def _persist(self, batch: BatchJob):
        if self.store is not None:
            self.store.save_batch(batch.snapshot())


def build_batch_summary(batch: BatchSnapshot, children: Sequence[JobSnapshot]) -> Dict[str, Any]:
    completed = [c for c in children if c.status == ScanStatus.COMPLETED]
    failed = [c for c in children if c.status != ScanStatus.COMPLETED]
    findings = [f for c in completed for f in c.result.findings]
    counts = {"high": 0, "medium": 0, "low": 0, "info": 0}
    for c in completed:
        counts["high"] += c.result.summary.high
        counts["medium"] += c.result.summary.medium
        counts["low"] += c.result.summary.low
        counts["info"] += c.result.summary.info
    average_score = (sum(c.result.score for c in completed) / len(completed)) if completed else 0.0
    scan_time = sum((c.updated_at - c.created_at).total_seconds() for c in children)
    return {
        "total_files": batch.total,
        "finished_scans": len(children),
        "successful_scans": len(completed),
        "failed_scans": len(failed),
        "total_vulnerabilities": sum(counts.values()),
        "high_severity_count": counts["high"],
        "medium_severity_count": counts["medium"],
        "low_severity_count": counts["low"],
        "info_count": counts["info"],
        "average_score": round(average_score, 2),
        "total_scan_time": round(scan_time, 3),
        "tools_used": sorted({tool for c in children for tool in c.tools}),
        "recommendations": HeuristicEnricher().recommendations(findings) if completed else [],
    }
