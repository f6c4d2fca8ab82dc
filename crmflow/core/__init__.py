from crmflow.core.engine import WorkflowEngine

__all__ = ["WorkflowEngine"]
