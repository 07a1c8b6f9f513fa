"""
Job status routes, the only place asynchronous write failures surface.
"""
from fastapi import APIRouter, Depends, HTTPException, Response

from catalog.context import CatalogContext
from catalog.routes.deps import get_context
from catalog.services.job_queue import JobQueue

router = APIRouter()


def _queue(context: CatalogContext, queue: str) -> JobQueue:
    try:
        return context.queue_for(queue)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown queue: {queue}")


@router.get("/{queue}")
async def queue_counts(queue: str, context: CatalogContext = Depends(get_context)):
    """Number of jobs per status"""
    return await _queue(context, queue).counts()


@router.get("/{queue}/{job_id}")
async def job_status(queue: str, job_id: str, context: CatalogContext = Depends(get_context)):
    status = await _queue(context, queue).get_job_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@router.delete("/{queue}/{job_id}", status_code=204)
async def remove_job(queue: str, job_id: str, context: CatalogContext = Depends(get_context)):
    if not await _queue(context, queue).remove(job_id):
        raise HTTPException(status_code=409, detail="Job not found or currently active")
    return Response(status_code=204)
