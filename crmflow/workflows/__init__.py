"""crmflow.workflows: template resolution, condition evaluation, and step executors."""

from .conditions import evaluate_conditions, evaluate_expression
from .steps import build_step
from .templates import resolve, resolve_object

__all__ = ["resolve", "resolve_object", "evaluate_conditions", "evaluate_expression", "build_step"]
