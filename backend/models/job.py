"""
Job tracking models for the Celery tasks.

A ``JobRun`` row is created by the API before a classification or PDF
conversion task is dispatched; the worker moves it through its lifecycle
and appends ``JobProgress`` rows as it goes.
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, Integer, String, TIMESTAMP, ForeignKey, Numeric, Text,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import relationship

from backend.models.schema import Base, JSONType


class JobStatus(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobType(str, Enum):
    """Type of background job."""
    CLASSIFICATION = 'classification'
    CONVERSION = 'conversion'


TERMINAL_STATUSES = (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED)
ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def _values(enum_cls) -> str:
    return ', '.join(f"'{member.value}'" for member in enum_cls)


class JobRun(Base):
    """
    One classification or conversion run.

    ``job_id`` is the Celery task id. ``params`` records what the job was
    started with, ``result`` and ``error`` what it ended with.
    """

    __tablename__ = 'job_runs'
    __table_args__ = (
        CheckConstraint(f"status IN ({_values(JobStatus)})", name='job_runs_status_check'),
        CheckConstraint(f"job_type IN ({_values(JobType)})", name='job_runs_job_type_check'),
        Index('idx_job_runs_status', 'status'),
        Index('idx_job_runs_created_at', 'created_at'),
        Index('idx_job_runs_file_id', 'file_id'),
        Index('idx_job_runs_type_status', 'job_type', 'status'),
        {'comment': 'Classification and PDF conversion jobs'}
    )

    job_id = Column(String(255), primary_key=True, comment='Celery task UUID')
    job_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, server_default=JobStatus.PENDING.value)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow,
                        server_default=text('CURRENT_TIMESTAMP'))
    started_at = Column(TIMESTAMP)
    completed_at = Column(TIMESTAMP)

    params = Column(JSONType, nullable=False, default=dict, server_default='{}')
    result = Column(JSONType)
    error = Column(JSONType)

    file_id = Column(String(36), ForeignKey('files.id', ondelete='SET NULL'),
                     comment='File being classified or converted')
    created_by = Column(String(255), comment='User or API key that created the job')

    file = relationship('FileRecord', back_populates='jobs')
    progress = relationship(
        'JobProgress',
        back_populates='job',
        cascade='all, delete-orphan',
        order_by='JobProgress.timestamp'
    )

    def __repr__(self):
        return f"<JobRun(job_id='{self.job_id}', type='{self.job_type}', status='{self.status}')>"

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def latest_progress(self) -> Optional['JobProgress']:
        return self.progress[-1] if self.progress else None

    def mark_processing(self):
        self.status = JobStatus.PROCESSING.value
        self.started_at = datetime.utcnow()

    def mark_success(self, result: Dict[str, Any]):
        self.status = JobStatus.SUCCESS.value
        self.completed_at = datetime.utcnow()
        self.result = result

    def mark_failed(self, error: Dict[str, Any]):
        self.status = JobStatus.FAILED.value
        self.completed_at = datetime.utcnow()
        self.error = error

    def mark_cancelled(self):
        self.status = JobStatus.CANCELLED.value
        self.completed_at = datetime.utcnow()
        self.error = {'error': 'Job cancelled by user'}


class JobProgress(Base):
    """A single progress report from a running job."""

    __tablename__ = 'job_progress'
    __table_args__ = (
        Index('idx_job_progress_job_id', 'job_id'),
        Index('idx_job_progress_timestamp', 'timestamp'),
        Index('idx_job_progress_job_stage', 'job_id', 'stage'),
        {'comment': 'Progress reports for jobs'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(255), ForeignKey('job_runs.job_id', ondelete='CASCADE'), nullable=False)
    stage = Column(String(50), nullable=False, comment='e.g. loading, classifying, writing')
    percent = Column(Numeric(5, 2), nullable=False)
    message = Column(Text)
    timestamp = Column(TIMESTAMP, nullable=False, default=datetime.utcnow,
                       server_default=text('CURRENT_TIMESTAMP'))

    job = relationship('JobRun', back_populates='progress')

    def __repr__(self):
        return f"<JobProgress(job_id='{self.job_id}', stage='{self.stage}', percent={self.percent})>"

    def to_dict(self) -> dict:
        return {
            'stage': self.stage,
            'percent': float(self.percent),
            'message': self.message or '',
            'timestamp': self.timestamp.isoformat() if self.timestamp else None
        }
