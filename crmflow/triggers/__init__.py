from crmflow.triggers.dispatcher import EventDispatcher
from crmflow.triggers.intake import normalize_trigger_payload
from crmflow.triggers.monitor import EventMonitor

__all__ = ["EventDispatcher", "EventMonitor", "normalize_trigger_payload"]
