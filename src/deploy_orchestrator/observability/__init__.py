"""Logging, metrics and tracing for the deployment orchestrator."""

from .logging import (
    DeploymentContextFilter,
    DeploymentJSONFormatter,
    ServiceNameFilter,
    TraceContextFilter,
    deployment_context,
    setup_deployment_logging,
    setup_logging_from_settings,
)
from .metrics import DeploymentMetricsRecorder
from .tracing import deployment_span, get_tracer, mark_span

__all__ = [
    "DeploymentContextFilter",
    "DeploymentJSONFormatter",
    "DeploymentMetricsRecorder",
    "ServiceNameFilter",
    "TraceContextFilter",
    "deployment_context",
    "deployment_span",
    "get_tracer",
    "mark_span",
    "setup_deployment_logging",
    "setup_logging_from_settings",
]
