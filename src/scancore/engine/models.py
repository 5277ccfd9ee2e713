# src/scancore/engine/models.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class ScanJobRecord(Base):
    __tablename__ = 'scan_jobs'
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=True, index=True)
    network = Column(String, nullable=True)
    source_name = Column(String, nullable=True)
    tools = Column(Text, nullable=True)  # JSON list of tool names
    status = Column(String, default='pending')
    progress = Column(Integer, default=0)
    result = Column(Text, nullable=True)  # JSON aggregated report
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)


class BatchJobRecord(Base):
    __tablename__ = 'batch_jobs'
    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    child_job_ids = Column(Text, nullable=False)  # JSON list, fixed at creation
    status = Column(String, default='pending')
    total_files = Column(Integer, default=0)
    processed_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    config = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), default=_utcnow)
    end_time = Column(DateTime(timezone=True), nullable=True)
