# src/scancore/engine/store.py
"""
ScanHistoryStore: writes one row per scan job and per batch job for history and
audit queries. The in-memory registry stays the live source of truth, so a
failed write is logged and never changes a job's outcome.
"""
import json
import logging
import threading
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from scancore.engine.models import BatchJobRecord, ScanJobRecord
from scancore.engine.states import JobSnapshot


class ScanHistoryStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        # sqlite connections are shared between worker threads
        self._lock = threading.Lock()

    def _open(self) -> Session:
        self._lock.acquire()
        try:
            return self.session_factory()
        except Exception:
            self._lock.release()
            raise

    def _close(self, db: Session):
        try:
            db.close()
        finally:
            self._lock.release()

    def save_scan(self, snapshot: JobSnapshot):
        db = self._open()
        try:
            row = db.query(ScanJobRecord).filter(ScanJobRecord.job_id == snapshot.job_id).first()
            if row is None:
                row = ScanJobRecord(
                    job_id=snapshot.job_id,
                    owner_id=snapshot.owner_id,
                    network=snapshot.network,
                    source_name=snapshot.source_name,
                    tools=json.dumps(list(snapshot.tools)),
                    created_at=snapshot.created_at,
                )
                db.add(row)
            row.status = snapshot.status.value
            row.progress = snapshot.progress
            row.updated_at = snapshot.updated_at
            if snapshot.result is not None:
                row.result = snapshot.result.model_dump_json()
            if snapshot.error is not None:
                row.error = snapshot.error
            if snapshot.is_terminal:
                row.finished_at = snapshot.updated_at
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"[job_id={snapshot.job_id}] Failed to persist scan job: {e}")
        finally:
            self._close(db)

    def save_batch(self, snapshot):
        db = self._open()
        try:
            row = db.query(BatchJobRecord).filter(BatchJobRecord.batch_id == snapshot.batch_id).first()
            if row is None:
                row = BatchJobRecord(
                    batch_id=snapshot.batch_id,
                    owner_id=snapshot.owner_id,
                    child_job_ids=json.dumps(list(snapshot.child_job_ids)),
                    total_files=len(snapshot.child_job_ids),
                    config=snapshot.config.model_dump_json(),
                    start_time=snapshot.start_time,
                )
                db.add(row)
            row.status = snapshot.status.value
            row.processed_count = snapshot.processed_count
            row.failed_count = snapshot.failed_count
            row.error = snapshot.error
            row.end_time = snapshot.end_time
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"[batch_id={snapshot.batch_id}] Failed to persist batch job: {e}")
        finally:
            self._close(db)

    def scan_history(self, owner_id: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 20, offset: int = 0) -> List[dict]:
        db = self._open()
        try:
            query = db.query(ScanJobRecord)
            if owner_id:
                query = query.filter(ScanJobRecord.owner_id == owner_id)
            if status:
                query = query.filter(ScanJobRecord.status == status)
            rows = query.order_by(ScanJobRecord.created_at.desc()).offset(offset).limit(limit).all()
            return [{
                "job_id": row.job_id,
                "owner_id": row.owner_id,
                "network": row.network,
                "source": row.source_name,
                "tools": json.loads(row.tools) if row.tools else [],
                "status": row.status,
                "progress": row.progress,
                "score": json.loads(row.result).get("score") if row.result else None,
                "error": row.error,
                "created_at": str(row.created_at),
                "finished_at": str(row.finished_at) if row.finished_at else None,
            } for row in rows]
        finally:
            self._close(db)

    def batch_history(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[dict]:
        db = self._open()
        try:
            rows = (
                db.query(BatchJobRecord)
                .filter(BatchJobRecord.owner_id == owner_id)
                .order_by(BatchJobRecord.start_time.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [{
                "batch_id": row.batch_id,
                "status": row.status,
                "total_files": row.total_files,
                "processed_count": row.processed_count,
                "failed_count": row.failed_count,
                "error": row.error,
                "start_time": str(row.start_time),
                "end_time": str(row.end_time) if row.end_time else None,
            } for row in rows]
        finally:
            self._close(db)
