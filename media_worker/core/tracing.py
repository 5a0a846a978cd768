"""OpenTelemetry tracing.

Job stages (download, probe, per-track encode, upload) each run inside a
span so the time spent in the external encoder is visible per artifact.
Without an OTLP endpoint the provider still assigns trace ids, which the
log formatter picks up.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "media_worker"

_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
) -> None:
    """Install the global tracer provider.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        environment: Deployment environment
        otlp_endpoint: OTLP gRPC collector; spans stay local when unset
    """
    global _provider

    _provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    }))

    if otlp_endpoint:
        # Shipped in the optional ``otlp`` extra
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTLP endpoint configured but exporter is not installed")
        else:
            _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info("Exporting spans", extra={"otlp_endpoint": otlp_endpoint})

    trace.set_tracer_provider(_provider)


def _span_context():
    context = trace.get_current_span().get_span_context()
    return context if context.is_valid else None


def get_trace_id() -> Optional[str]:
    """Current trace ID as 32 hex characters, if a span is active."""
    context = _span_context()
    return format(context.trace_id, "032x") if context else None


def get_span_id() -> Optional[str]:
    context = _span_context()
    return format(context.span_id, "016x") if context else None


@contextmanager
def create_span(name: str, attributes: Optional[dict] = None) -> Iterator[Span]:
    """Run a block inside a child span of the current one.

    Attributes whose value is None are dropped; OpenTelemetry rejects them.

    Args:
        name: Span name, e.g. ``extract.audio_track``
        attributes: Optional span attributes
    """
    clean = {key: value for key, value in (attributes or {}).items() if value is not None}
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name, attributes=clean) as span:
        yield span


def record_exception(exception: BaseException) -> None:
    """Attach an exception to the current span and mark it failed."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and drop the provider."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None
