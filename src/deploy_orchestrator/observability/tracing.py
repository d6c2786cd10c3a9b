"""OpenTelemetry tracing helpers."""

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

TRACER_NAME = "deploy_orchestrator"


def get_tracer() -> trace.Tracer:
    """Tracer from the globally configured provider (a no-op until one is set)."""
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def deployment_span(name: str, deployment_id: str, enabled: bool = True, **attributes) -> Iterator[Span]:
    """Span tagged with the deployment id; a non-recording span when disabled."""
    if not enabled:
        yield trace.INVALID_SPAN
        return
    with get_tracer().start_as_current_span(name) as span:
        span.set_attribute("deployment.id", deployment_id)
        for key, value in attributes.items():
            span.set_attribute(f"deployment.{key}", value)
        yield span


def mark_span(span: Span, success: bool, message: str = "") -> None:
    if success:
        span.set_status(Status(StatusCode.OK))
    else:
        span.set_status(Status(StatusCode.ERROR, message))
