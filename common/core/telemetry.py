"""OpenTelemetry wiring for traces and logs.

Spans and log records are exported over OTLP/HTTP to Axiom when
``axiom_token`` is configured. Without a token the tracer provider is still
installed so spans propagate in-process, and logs go to stderr only.
"""

from typing import Any, Dict, Optional
import asyncio
import functools
import logging
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from common.core.config import settings

AXIOM_ENDPOINT = "https://api.axiom.co/v1"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

tracer = trace.get_tracer(settings.otel_service_name)

_ready = False


def _export_headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.axiom_token}",
        "X-Axiom-Dataset": settings.axiom_dataset or "",
    }


def setup_telemetry() -> None:
    """Install tracer and logger providers. Safe to call more than once."""
    global _ready
    if _ready:
        return
    _ready = True

    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: settings.otel_service_version,
        }
    )
    tracer_provider = TracerProvider(resource=resource)

    if settings.axiom_token:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=f"{AXIOM_ENDPOINT}/traces", headers=_export_headers()
                )
            )
        )

        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(
                OTLPLogExporter(
                    endpoint=f"{AXIOM_ENDPOINT}/logs", headers=_export_headers()
                )
            )
        )
        set_logger_provider(logger_provider)
        logging.getLogger().addHandler(
            LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
        )

    trace.set_tracer_provider(tracer_provider)


def get_logger(name: str) -> logging.Logger:
    """Module logger; installs telemetry on first use."""
    setup_telemetry()
    return logging.getLogger(name)


def trace_span(func):
    """Wrap a function or coroutine in a span named ``Owner.method``."""
    qualname = func.__qualname__

    @functools.wraps(func)
    async def traced_async(*args, **kwargs):
        with tracer.start_as_current_span(qualname):
            return await func(*args, **kwargs)

    @functools.wraps(func)
    def traced(*args, **kwargs):
        with tracer.start_as_current_span(qualname):
            return func(*args, **kwargs)

    return traced_async if asyncio.iscoroutinefunction(func) else traced


def log_span_event(message: str, attributes: Optional[Dict[str, Any]] = None):
    """Record ``message`` on the active span and in the regular log."""
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(message, attributes=attributes or {})
    get_logger(__name__).info(message, extra=attributes)
