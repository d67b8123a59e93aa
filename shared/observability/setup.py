import logging
import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

# OpenTelemetry
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from shared.config import settings

# All three service apps run in one process and share these
_logging_configured = False
_tracer_provider_set = False

# Liveness probes and scrapes would drown out real traffic
_UNMEASURED_PATHS = ["/health", "/metrics"]


def add_otel_ids(logger, log_method, event_dict):
    """Puts the current trace/span ids on every log line so logs join traces."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def configure_logging():
    global _logging_configured
    if _logging_configured:
        return
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    # Library loggers (uvicorn, sqlalchemy) go through stdlib logging
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logging_configured = True


def configure_tracing(app: FastAPI):
    global _tracer_provider_set
    if not _tracer_provider_set:
        # One provider per process, named after the deployment rather than
        # whichever service app happened to be imported first
        resource = Resource.create({SERVICE_NAME: settings.OTEL_SERVICE_NAME})
        provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(provider)

        # Export to Jaeger via OTLP gRPC (defaults to localhost:4317)
        exporter = OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

        # Outgoing calls to the payment gateway, notifier and print workers
        HTTPXClientInstrumentor().instrument()
        _tracer_provider_set = True

    FastAPIInstrumentor.instrument_app(app, excluded_urls=",".join(_UNMEASURED_PATHS))


def configure_metrics(app: FastAPI):
    # Request latency and status codes per route, exposed at /metrics next to
    # the dispatcher and reconciliation counters
    Instrumentator(excluded_handlers=_UNMEASURED_PATHS).instrument(app).expose(
        app, include_in_schema=False
    )


def setup_observability(app: FastAPI, service_name: str):
    """
    Bootstraps logging, tracing and metrics for one service app.
    Tracing is skipped when OTEL_ENABLED=false (local runs, tests).
    """
    configure_logging()
    if settings.OTEL_ENABLED:
        configure_tracing(app)
    configure_metrics(app)
    structlog.get_logger(__name__).info("observability.ready", service=service_name,
                                        tracing=settings.OTEL_ENABLED)
