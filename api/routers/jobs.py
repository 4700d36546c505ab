"""
Jobs router - Background job status and control.

This module provides endpoints for checking, listing and cancelling
classification and PDF conversion jobs.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from api.dependencies import get_current_user, get_db, get_redis
from api.schemas.job_schema import (
    JobListItem, JobListResponse, JobProgressResponse, JobStatusResponse
)
from backend.models.job import ACTIVE_STATUSES, JobRun

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/jobs', tags=['jobs'])


def latest_progress(job_run: JobRun, redis_client) -> Optional[JobProgressResponse]:
    """Latest progress from Redis (real-time), falling back to the database."""
    try:
        progress_data = redis_client.get(f'job_progress:{job_run.job_id}')
        if progress_data:
            return JobProgressResponse(**json.loads(progress_data))
    except Exception as e:
        logger.warning(f"Could not fetch progress from Redis for {job_run.job_id}: {e}")

    if job_run.latest_progress:
        return JobProgressResponse(**job_run.latest_progress.to_dict())

    return None


def _get_job(db: Session, job_id: str, user: str) -> JobRun:
    job_run = db.query(JobRun).filter_by(job_id=job_id, created_by=user).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    return job_run


@router.get('/{job_id}', response_model=JobStatusResponse)
def get_job_status(
    job_id: str,
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
    current_user: str = Depends(get_current_user)
):
    """
    Get current status of a job.

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Job is currently running
    - `success`: Job completed successfully
    - `failed`: Job failed with error
    - `cancelled`: Job was cancelled
    """
    job_run = _get_job(db, job_id, current_user)

    return JobStatusResponse(
        job_id=job_run.job_id,
        job_type=job_run.job_type,
        status=job_run.status,
        created_at=job_run.created_at,
        started_at=job_run.started_at,
        completed_at=job_run.completed_at,
        progress=latest_progress(job_run, redis_client),
        result=job_run.result,
        error=job_run.error,
        file_id=job_run.file_id,
        created_by=job_run.created_by
    )


@router.get('', response_model=JobListResponse)
def list_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    job_type: Optional[str] = Query(None, description="Filter by job type"),
    job_status: Optional[str] = Query(None, alias='status', description="Filter by status"),
    file_id: Optional[str] = Query(None, description="Filter by file"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    List the current user's jobs with pagination and filtering.

    **Filters:**
    - `job_type`: 'classification' or 'conversion'
    - `status`: job status
    - `file_id`: jobs of one file
    """
    query = db.query(JobRun).filter_by(created_by=current_user)

    if job_type:
        query = query.filter_by(job_type=job_type)

    if job_status:
        query = query.filter_by(status=job_status)

    if file_id:
        query = query.filter_by(file_id=file_id)

    total = query.count()

    jobs = query.order_by(JobRun.created_at.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    total_pages = (total + page_size - 1) // page_size

    return JobListResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=[JobListItem.model_validate(job) for job in jobs]
    )


@router.delete('/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Cancel a pending or processing job.

    **Returns:**
    - 204 No Content if successfully cancelled
    - 404 if job not found
    - 400 if job cannot be cancelled (already completed)
    """
    job_run = _get_job(db, job_id, current_user)

    if job_run.status not in ACTIVE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel job with status '{job_run.status}'"
        )

    job_run.mark_cancelled()

    db.commit()

    # Try to revoke Celery task
    try:
        from tasks.celery_app import celery_app
        celery_app.control.revoke(job_id, terminate=True)
        logger.info(f"Revoked Celery task {job_id}")
    except Exception as e:
        logger.warning(f"Could not revoke Celery task {job_id}: {e}")

    logger.info(f"Job {job_id} cancelled by {current_user}")

    return Response(status_code=status.HTTP_204_NO_CONTENT)
