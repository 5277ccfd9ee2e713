# src/scancore/engine/job_manager.py
"""
ScanJobRegistry: in-memory map from job id to ScanJob, the single source of truth
for job status. History rows are written through an optional ScanHistoryStore.

Locking: the registry lock only guards the id -> job map (insert, lookup, purge)
and is never held while a job is mutated. Every job carries its own lock, so
updates to different jobs do not contend.
"""
import logging
import threading
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from scancore.engine.errors import NotFound
from scancore.engine.states import JobSnapshot, ScanJob, now_utc
from scancore.engine.store import ScanHistoryStore

TerminalListener = Callable[[JobSnapshot], None]


class ScanJobRegistry:
    def __init__(self, store: Optional[ScanHistoryStore] = None):
        self._jobs: Dict[str, ScanJob] = {}
        self._lock = threading.Lock()
        self._store = store
        self._listeners: List[TerminalListener] = []

    def add_terminal_listener(self, listener: TerminalListener):
        self._listeners.append(listener)

    def put(self, job: ScanJob):
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Duplicate job id {job.id}")
            self._jobs[job.id] = job
        if self._store is not None:
            with job.lock:
                self._store.save_scan(job.snapshot())
        logging.info(f"[job_id={job.id}] Registered scan job. source={job.source.name} tools={list(job.tools)}")

    def get(self, job_id: str) -> ScanJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Scan job not found: {job_id}")
        return job

    def snapshot(self, job_id: str) -> JobSnapshot:
        job = self.get(job_id)
        with job.lock:
            return job.snapshot()

    def mutate(self, job_id: str, mutation: Callable[[ScanJob], bool]) -> bool:
        """
        Apply ``mutation`` under the job's lock. The mutation returns False when it
        does not apply (e.g. the job is already terminal); nothing is touched then.
        """
        job = self.get(job_id)
        with job.lock:
            was_terminal = job.is_terminal
            if not mutation(job):
                return False
            job.updated_at = now_utc()
            snapshot = job.snapshot()
            if self._store is not None:
                self._store.save_scan(snapshot)
        if snapshot.is_terminal and not was_terminal:
            for listener in list(self._listeners):
                try:
                    listener(snapshot)
                except Exception as e:
                    logging.error(f"[job_id={job_id}] Terminal listener failed: {e}")
        return True

    def list_jobs(self, owner_id: Optional[str] = None) -> List[JobSnapshot]:
        with self._lock:
            jobs = list(self._jobs.values())
        snapshots = []
        for job in jobs:
            if owner_id is not None and job.owner_id != owner_id:
                continue
            with job.lock:
                snapshots.append(job.snapshot())
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def purge_terminal(self, older_than: timedelta) -> int:
        """Retention sweep: drop terminal jobs last updated before now - older_than."""
        cutoff = now_utc() - older_than
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.is_terminal and job.updated_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logging.info(f"Purged {len(expired)} terminal scan jobs older than {older_than}")
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id):
        with self._lock:
            return job_id in self._jobs
