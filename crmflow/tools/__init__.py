from crmflow.tools.plugin import tool, get_registered_tools
from crmflow.tools.registry import ToolRegistry
from crmflow.tools.sandbox import Sandbox
from crmflow.tools.enrichment import EnrichmentRegistry
from crmflow.tools.retry import RetryPolicy

__all__ = ["tool", "get_registered_tools", "ToolRegistry", "Sandbox", "EnrichmentRegistry", "RetryPolicy"]
