"""GET /runs/{run_id}: run status with its step logs."""

from fastapi import APIRouter, Depends, HTTPException

from crmflow.api.deps import get_dispatcher
from crmflow.api.schemas import RunStatusResponse

router = APIRouter(tags=["runs"])


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str, dispatcher=Depends(get_dispatcher)):
    status = await dispatcher.get_run_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return RunStatusResponse(**status)
