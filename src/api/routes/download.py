"""CSV export of the stored bounce records."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.concurrency import run_in_threadpool

from src.api.deps import enforce_rate_limit, get_store
from src.services.record_store import RecordStore
from src.utils.datetime import utcnow

router = APIRouter(tags=["download"], dependencies=[Depends(enforce_rate_limit)])


@router.get("/download")
async def download_csv(store: RecordStore = Depends(get_store)) -> Response:
    """Return every stored record as a CSV attachment."""

    content = await run_in_threadpool(store.export_csv)
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CSV file not found")
    filename = f"bounces_detailed_{utcnow():%Y-%m-%d}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
