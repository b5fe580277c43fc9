"""Scheduled job status and manual trigger routes."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.api.deps import get_database
from market_intel.db.models import JobExecution
from market_intel.worker.scheduler import job_scheduler

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class JobExecutionResponse(BaseModel):
    id: int
    job_name: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    result_data: dict | None
    error_message: str | None
    triggered_by: str

    class Config:
        from_attributes = True


@router.get("/status")
async def jobs_status():
    """Schedule, running flag and last result for every job."""
    return job_scheduler.status()


@router.post("/{job_name}/run", status_code=202)
async def run_job(job_name: str, background_tasks: BackgroundTasks):
    """Start a job now. Returns immediately; poll status or history for the outcome."""
    job = job_scheduler.get_job(job_name)
    if job.is_running:
        return {"status": "skipped", "job": job_name, "message": "Job already running"}
    background_tasks.add_task(job_scheduler.run_now, job_name, "manual")
    return {"status": "started", "job": job_name}


@router.get("/{job_name}/history", response_model=List[JobExecutionResponse])
async def job_history(
    job_name: str,
    limit: int = 20,
    db: AsyncSession = Depends(get_database),
):
    job_scheduler.get_job(job_name)
    result = await db.execute(
        select(JobExecution)
        .where(JobExecution.job_name == job_name)
        .order_by(JobExecution.started_at.desc(), JobExecution.id.desc())
        .limit(limit)
    )
    return result.scalars().all()
