"""Application configuration + declarative YAML workflow loader for crmflow.

All env vars defined here with CRMFLOW_ prefix.
YAML loader: load_workflows_yaml()
"""

from pydantic_settings import BaseSettings
from typing import Optional

from crmflow.config.loader import load_workflows_yaml
from crmflow.config.schema import WorkflowYAML, StepYAML, WorkflowsConfig


class CrmflowConfig(BaseSettings):
    # ── App ──
    app_name: str = "crmflow"
    debug: bool = False
    log_level: str = "INFO"
    default_team_id: Optional[str] = None

    # ── Database ──
    database_url: str = "sqlite+aiosqlite:///./crmflow.db"

    # ── LLM (litellm) ──
    llm_api_key: Optional[str] = None          # or set ANTHROPIC_API_KEY in env
    llm_model_default: str = "anthropic/claude-sonnet-4-20250514"
    llm_model_haiku: str = "anthropic/claude-3-5-haiku-20241022"
    llm_timeout_seconds: int = 30

    # ── Execution ──
    tool_timeout_seconds: int = 30
    workflow_run_timeout: int = 600             # wall-clock budget per run
    process_emitted_immediately: bool = False   # False = queue emitted events
    max_emit_depth: int = 5                     # only used when processing inline

    # ── Event monitor ──
    monitor_interval_seconds: float = 5.0
    monitor_batch_size: int = 10
    monitor_on_startup: bool = False         # run the EventMonitor inside `crmflow serve`

    # ── Enrichment providers ──
    enrichment_max_retries: int = 0
    pdl_api_key: Optional[str] = None
    hunter_api_key: Optional[str] = None
    apollo_api_key: Optional[str] = None
    apify_api_key: Optional[str] = None
    perplexity_api_key: Optional[str] = None

    # ── Notifications ──
    slack_webhook_url: Optional[str] = None

    # ── Server ──
    host: str = "0.0.0.0"
    port: int = 8000
    seed_on_startup: bool = True             # load bundled workflows when the API starts

    model_config = {"env_prefix": "CRMFLOW_", "env_file": ".env", "extra": "ignore"}


config = CrmflowConfig()


__all__ = [
    "CrmflowConfig", "config",
    "load_workflows_yaml",
    "WorkflowYAML", "StepYAML", "WorkflowsConfig",
]
