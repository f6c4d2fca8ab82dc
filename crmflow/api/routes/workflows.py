"""Workflow endpoints: list definitions, run one by slug."""

from fastapi import APIRouter, Depends, HTTPException

from crmflow.api.deps import get_dispatcher
from crmflow.api.schemas import TriggerWorkflowRequest
from crmflow.exceptions import WorkflowNotFound

router = APIRouter(tags=["workflows"])


@router.get("/workflows")
async def list_workflows(active_only: bool = False, dispatcher=Depends(get_dispatcher)):
    definitions = await dispatcher.repository.list_workflows(active_only=active_only)
    return [d.model_dump(mode="json") for d in definitions]


@router.post("/workflows/{slug}/run")
async def run_workflow(
    slug: str,
    body: TriggerWorkflowRequest = None,
    dispatcher=Depends(get_dispatcher),
):
    """Manual run; the outcome is returned whatever the run status."""
    try:
        outcome = await dispatcher.trigger_workflow(slug, (body.context if body else None))
    except WorkflowNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return outcome.model_dump(mode="json")
