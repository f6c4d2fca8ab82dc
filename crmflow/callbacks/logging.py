"""Structured JSON logging callback for workflow lifecycle events."""

import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger("crmflow.audit")

_ERROR_EVENTS = {"step_failed"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _compact(value):
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return str(value)[:200]


class LoggingCallback:
    """Emits one JSON log line per engine lifecycle event.

    Each line carries ``event``, ``ts`` (ISO-8601 UTC) and the event data.
    Step failures log at WARNING, a failed run at ERROR, everything else at INFO.
    Logger name: crmflow.audit

        engine = WorkflowEngine(..., callbacks=[LoggingCallback()])
    """

    async def __call__(self, event: str, data: dict) -> None:
        line = json.dumps({"event": event, "ts": _now(), **{k: _compact(v) for k, v in data.items()}})
        if event == "run_finished" and data.get("status") == "failed":
            logger.error(line)
        elif event in _ERROR_EVENTS:
            logger.warning(line)
        else:
            logger.info(line)


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup shared by the CLI and the API server."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
