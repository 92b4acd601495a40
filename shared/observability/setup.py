import os
import logging
from typing import Optional

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

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Empty disables span export (spans are still created for log correlation)
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")

_provider: Optional[TracerProvider] = None


# 1. Structlog Processor: Injects Trace/Span IDs into every log line
def add_otel_ids(logger, log_method, event_dict):
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


# 2. Structlog as JSON lines; exceptions rendered into the event
def configure_logging(level: str = LOG_LEVEL):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _tracer_provider(service_name: str) -> TracerProvider:
    """The process has one global provider; the payment and bot apps share it."""
    global _provider
    if _provider is None:
        _provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        if OTLP_ENDPOINT:
            _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
        trace.set_tracer_provider(_provider)
        # Gateway, partner and Telegram calls all go through httpx
        HTTPXClientInstrumentor().instrument()
    return _provider


# 3. OpenTelemetry tracing for incoming requests and outgoing API calls
def configure_tracing(app: FastAPI, service_name: str):
    provider = _tracer_provider(service_name)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)


# 4. Prometheus: HTTP latency/status per app plus the payment counters, at /metrics
def configure_metrics(app: FastAPI):
    Instrumentator().instrument(app).expose(app)


def setup_observability(app: FastAPI, service_name: str):
    """
    Bootstraps Logging, Tracing, and Metrics for a FastAPI app.
    Safe to call for every mounted sub-app of the same process.
    """
    configure_logging()
    configure_tracing(app, service_name)
    configure_metrics(app)
