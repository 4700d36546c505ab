"""
Classification background tasks.

This module defines Celery tasks for AI classification of trial balance
files with progress tracking, plus job housekeeping.
"""

import json
import logging
import traceback
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Dict

import redis
from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from api.config import settings
from tasks.celery_app import celery_app
from services.file_service import FileService
from services.providers import build_classifier, build_ocr
from services.storage_service import StorageService
from backend.models.job import TERMINAL_STATUSES, JobRun, JobProgress, JobStatus

logger = logging.getLogger(__name__)

# Create Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# Create database engine and session factory
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db_session() -> Session:
    """Get database session."""
    return SessionLocal()


@lru_cache()
def get_storage() -> StorageService:
    return StorageService(
        storage_dir=settings.STORAGE_DIR,
        bucket=settings.STORAGE_BUCKET,
        signing_secret=settings.SIGNED_URL_SECRET
    )


@lru_cache()
def get_classifier():
    return build_classifier(settings)


@lru_cache()
def get_ocr():
    return build_ocr(settings)


class ClassifierTask(Task):
    """
    Base task class with progress tracking.

    Provides methods for updating job progress in both Redis (for real-time)
    and the database (for persistence).
    """

    def on_progress(self, stage: str, percent: float, message: str):
        """
        Update job progress in Redis and database.

        Args:
            stage: Current stage (e.g., 'loading', 'classifying')
            percent: Progress percentage (0-100)
            message: Human-readable progress message
        """
        job_id = self.request.id

        try:
            # Store in Redis for real-time WebSocket updates
            progress_data = {
                'stage': stage,
                'percent': float(percent),
                'message': message,
                'timestamp': datetime.utcnow().isoformat()
            }

            redis_client.setex(
                f'job_progress:{job_id}',
                settings.PROGRESS_CACHE_EXPIRY,
                json.dumps(progress_data)
            )
        except Exception as e:
            logger.warning(f"Could not publish progress for {job_id} to Redis: {e}")

        try:
            # Store in database for persistence
            with get_db_session() as session:
                progress = JobProgress(
                    job_id=job_id,
                    stage=stage,
                    percent=percent,
                    message=message
                )
                session.add(progress)
                session.commit()

            logger.debug(f"Progress updated: {job_id} - {stage} ({percent}%)")

        except Exception as e:
            logger.error(f"Error updating progress for {job_id}: {e}")

    def _update_job(self, job_id: str, update: Callable[[JobRun], None]):
        """Apply a lifecycle change to the job record unless it already ended."""
        try:
            with get_db_session() as session:
                job_run = session.query(JobRun).filter_by(job_id=job_id).first()
                if job_run is None:
                    logger.warning(f"Job {job_id} not found in database")
                    return
                if job_run.is_finished:
                    logger.info(f"Job {job_id} already {job_run.status}, leaving it unchanged")
                    return
                update(job_run)
                session.commit()
                logger.info(f"Job {job_id} status updated to {job_run.status}")
        except Exception as e:
            logger.error(f"Error updating job status for {job_id}: {e}")

    def job_started(self, job_id: str):
        self._update_job(job_id, lambda job_run: job_run.mark_processing())

    def job_succeeded(self, job_id: str, result: Dict[str, Any]):
        self._update_job(job_id, lambda job_run: job_run.mark_success(result))

    def is_cancelled(self, job_id: str) -> bool:
        with get_db_session() as session:
            job_run = session.query(JobRun).filter_by(job_id=job_id).first()
            return job_run is not None and job_run.status == JobStatus.CANCELLED

    def job_failed(self, job_id: str, exc: Exception, **details):
        """Record a failed run."""
        error_details = {
            'error': str(exc),
            'type': type(exc).__name__,
            'traceback': traceback.format_exc(),
            **details
        }

        self._update_job(job_id, lambda job_run: job_run.mark_failed(error_details))
        self.on_progress('failed', 0, f"Job failed: {str(exc)}")


@celery_app.task(base=ClassifierTask, bind=True, name='tasks.classification_tasks.classify_file')
def classify_file(self, file_id: str, user_id: str) -> Dict[str, Any]:
    """
    Background task to classify the accounts of a reformatted file.

    Args:
        file_id: File record ID
        user_id: Owner of the file

    Returns:
        Classification summary:
        {
            'file_id': str,
            'rows': int,
            'classifications': [[account type, primary, secondary, tertiary], ...],
            'validation': {...}
        }
    """
    job_id = self.request.id
    logger.info(f"Starting classification task {job_id} for file {file_id}")

    if self.is_cancelled(job_id):
        logger.info(f"Job {job_id} was cancelled before it started")
        return {'file_id': file_id, 'cancelled': True}

    try:
        self.job_started(job_id)

        with get_db_session() as session:
            service = FileService(
                db_session=session,
                storage=get_storage(),
                classifier=get_classifier(),
                progress_callback=self.on_progress,
                api_prefix=settings.API_PREFIX
            )
            record = service.get_file(user_id, file_id)
            result = service.process_file(record)

        self.job_succeeded(job_id, result)

        logger.info(f"Classification task {job_id} completed: {result['rows']} rows")
        return result

    except Exception as e:
        logger.error(f"Classification task {job_id} failed: {e}", exc_info=True)
        self.job_failed(job_id, e, file_id=file_id)
        raise


@celery_app.task(name='tasks.classification_tasks.cleanup_old_jobs')
def cleanup_old_jobs(days_to_keep: int = 30) -> Dict[str, Any]:
    """
    Clean up old job records and progress entries.

    Args:
        days_to_keep: Number of days to keep job records

    Returns:
        Dictionary with cleanup statistics
    """
    logger.info(f"Starting cleanup of jobs older than {days_to_keep} days")

    try:
        with get_db_session() as session:
            cutoff_date = datetime.utcnow() - timedelta(days=days_to_keep)

            finished = session.query(JobRun.job_id).filter(
                JobRun.completed_at < cutoff_date,
                JobRun.status.in_([s.value for s in TERMINAL_STATUSES])
            )
            old_job_ids = [job_id for (job_id,) in finished.all()]

            deleted_progress = 0
            deleted_jobs = 0
            if old_job_ids:
                deleted_progress = session.query(JobProgress).filter(
                    JobProgress.job_id.in_(old_job_ids)
                ).delete(synchronize_session=False)

                deleted_jobs = session.query(JobRun).filter(
                    JobRun.job_id.in_(old_job_ids)
                ).delete(synchronize_session=False)

            session.commit()

            # uploads left behind by interrupted requests
            deleted_temp = get_storage().cleanup_temp_files(settings.TEMP_UPLOAD_DIR, days_to_keep * 24)

            logger.info(f"Cleanup complete: {deleted_jobs} jobs, {deleted_progress} progress entries deleted")

            return {
                'deleted_jobs': deleted_jobs,
                'deleted_progress': deleted_progress,
                'deleted_temp_files': deleted_temp,
                'cutoff_date': cutoff_date.isoformat()
            }

    except Exception as e:
        logger.error(f"Error during cleanup: {e}", exc_info=True)
        return {
            'error': str(e),
            'deleted_jobs': 0,
            'deleted_progress': 0
        }
