"""POST /process-event: trigger intake.

Accepts a database insert hook body (``{"type": "INSERT", "record": {...}}``)
or a bare event object. Unknown events are stored before dispatch so the
processed flag has a row to land on.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from crmflow.api.deps import get_dispatcher
from crmflow.api.schemas import ErrorResponse
from crmflow.exceptions import InvalidTriggerPayload
from crmflow.triggers.intake import normalize_trigger_payload

logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"])


@router.post("/process-event", responses={400: {"model": ErrorResponse}})
async def process_event(request: Request, dispatcher=Depends(get_dispatcher)):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid payload format"}, status_code=400)

    try:
        event = normalize_trigger_payload(body)
    except InvalidTriggerPayload as exc:
        return JSONResponse({"error": exc.message}, status_code=400)

    logger.info(f"[API] Processing event: {event.type} ({event.id})")
    stored = await dispatcher.accept(event)
    result = await dispatcher.dispatch(stored)
    return JSONResponse(result.model_dump(mode="json"), status_code=200)
