"""FastAPI router for job lifecycle notifications."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from fieldalert.notifications.jobs import (
    JobNotificationData,
    JobNotificationResult,
    JobNotificationService,
)

router = APIRouter()


def _jobs(request: Request) -> JobNotificationService:
    jobs = getattr(request.app.state, "job_notifications", None)
    if jobs is None:
        raise HTTPException(status_code=503, detail="Job notifications not available")
    return jobs


@router.post("/api/jobs/assigned", response_model=JobNotificationResult)
async def job_assigned(body: JobNotificationData, request: Request) -> JobNotificationResult:
    """Notify the assigned staff member of a new job."""
    return await _jobs(request).notify_job_assigned(body)


@router.post("/api/jobs/status", response_model=JobNotificationResult)
async def job_status_changed(body: JobNotificationData, request: Request) -> JobNotificationResult:
    """Notify admins and managers of a job status change."""
    if not body.status:
        raise HTTPException(status_code=422, detail="status is required")
    return await _jobs(request).notify_job_status_changed(body)
