"""
WebSocket router - Real-time job progress.

Streams classification and conversion progress to the client until the
job reaches a terminal state.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, status
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_redis, get_websocket_user
from backend.models.job import JobRun, JobStatus

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=['websocket'])

POLL_INTERVAL = 0.5


def _read_progress(redis_client, job_run: JobRun) -> Optional[Dict[str, Any]]:
    """Progress published by the worker, or the last stored entry."""
    try:
        progress_data = redis_client.get(f'job_progress:{job_run.job_id}')
        if progress_data:
            return json.loads(progress_data)
    except Exception as e:
        logger.warning(f"Error reading progress from Redis for {job_run.job_id}: {e}")

    if job_run.latest_progress:
        return job_run.latest_progress.to_dict()
    return None


def _final_message(job_run: JobRun) -> Dict[str, Any]:
    message = {
        'job_id': job_run.job_id,
        'status': job_run.status,
        'completed_at': job_run.completed_at.isoformat() if job_run.completed_at else None
    }
    if job_run.status == JobStatus.SUCCESS:
        message['result'] = job_run.result
    elif job_run.status in (JobStatus.FAILED, JobStatus.CANCELLED):
        message['error'] = job_run.error
    return message


@router.websocket('/ws/jobs/{job_id}')
async def websocket_job_progress(
    websocket: WebSocket,
    job_id: str,
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
    current_user: Optional[str] = Depends(get_websocket_user)
):
    """
    WebSocket endpoint for real-time job progress updates.

    **Connection:**
    ```javascript
    const ws = new WebSocket('ws://localhost:3000/ws/jobs/abc-123-def-456?api_key=KEY');
    ws.onmessage = (event) => {
        const data = JSON.parse(event.data);
        if (data.progress) console.log(`${data.progress.stage}: ${data.progress.percent}%`);
        if (data.status === 'success') console.log('Classified', data.result.rows, 'rows');
    };
    ```

    Only jobs created with the same API key are visible; when auth is
    enabled the key comes from the ``api_key`` query parameter or the
    API key header.

    **Messages:**
    - on connect: `{"job_id", "status", "message"}`
    - on change: `{"job_id", "status", "progress": {"stage", "percent", "message", "timestamp"}}`
    - at the end: `{"job_id", "status", "completed_at", "result" | "error"}`
    """
    await websocket.accept()
    logger.info(f"WebSocket connection established for job {job_id}")

    try:
        if not current_user:
            await websocket.send_json({'error': 'API key required', 'job_id': job_id})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        job_run = db.query(JobRun).filter_by(job_id=job_id, created_by=current_user).first()
        if not job_run:
            await websocket.send_json({'error': f'Job {job_id} not found', 'job_id': job_id})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.send_json({
            'job_id': job_id,
            'status': job_run.status,
            'message': 'Connected to job progress stream'
        })

        last_status = job_run.status
        last_progress = None

        while True:
            db.refresh(job_run)

            progress = _read_progress(redis_client, job_run)
            if job_run.status != last_status or (progress and progress != last_progress):
                update = {'job_id': job_id, 'status': job_run.status}
                if progress:
                    update['progress'] = progress
                await websocket.send_json(update)
                last_status = job_run.status
                last_progress = progress

            if job_run.is_finished:
                await websocket.send_json(_final_message(job_run))
                logger.info(f"Job {job_id} finished with status {job_run.status}")
                break

            await asyncio.sleep(POLL_INTERVAL)

        await websocket.close()
        logger.info(f"WebSocket connection closed for job {job_id}")

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected from job {job_id}")

    except Exception as e:
        logger.error(f"WebSocket error for job {job_id}: {e}", exc_info=True)
        try:
            await websocket.send_json({'error': str(e), 'job_id': job_id})
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except RuntimeError as close_error:
            logger.debug(f"WebSocket for job {job_id} already closed: {close_error}")
