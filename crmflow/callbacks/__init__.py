"""Callback hooks for workflow lifecycle events."""

from crmflow.callbacks.logging import LoggingCallback, configure_logging

__all__ = ["LoggingCallback", "configure_logging"]
