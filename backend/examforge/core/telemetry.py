"""
ExamForge - Telemetry Module
Logging setup and OpenTelemetry tracing for jobs and LLM calls
"""
import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from examforge.core.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_initialized = False


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once per process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def init_telemetry(settings: Settings) -> bool:
    """
    Initialize OpenTelemetry with an OTLP exporter.
    Call this once at process startup; a no-op unless OTEL_ENABLED is set.
    """
    global _initialized

    if _initialized or not settings.OTEL_ENABLED:
        return _initialized

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": settings.APP_VERSION,
        "deployment.environment": settings.ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(
        endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True,
    )))
    trace.set_tracer_provider(provider)
    _initialized = True

    logger.info(
        "Telemetry initialized for %s -> %s",
        settings.OTEL_SERVICE_NAME,
        settings.OTEL_EXPORTER_OTLP_ENDPOINT,
    )
    return True


def get_tracer() -> trace.Tracer:
    """Tracer for the application; spans are dropped until telemetry is initialized."""
    return trace.get_tracer("examforge")


@contextmanager
def job_span(name: str, attributes: Optional[dict] = None):
    """
    Context manager wrapping one job execution in a span.

    Usage:
        with job_span("grade_attempt", {"attemptId": attempt_id}) as span:
            await grader.grade(attempt_id)
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(f"job.{name}") as span:
        span.set_attribute("job.name", name)
        for key, value in (attributes or {}).items():
            span.set_attribute(f"job.{key}", str(value) if value is not None else "")
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def trace_llm_call(
    model: str,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
    total_tokens: int = 0,
):
    """
    Record LLM-specific telemetry attributes on the current span.
    Call this within an active span to add token usage metrics.
    """
    span = trace.get_current_span()
    if span:
        span.set_attribute("llm.model", model)
        span.set_attribute("llm.tokens.prompt", prompt_tokens)
        span.set_attribute("llm.tokens.completion", completion_tokens)
        span.set_attribute("llm.tokens.total", total_tokens)
