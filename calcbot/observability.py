from __future__ import annotations

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger("calcbot.observability")

DEFAULT_OTLP_ENDPOINT = "http://127.0.0.1:4318/v1/traces"
# Health checks and scrapes stay out of the trace stream.
UNTRACED_ROUTES = "health,ready,metrics"


def otel_enabled() -> bool:
    return os.getenv("CALC_OTEL_ENABLED", "0") == "1"


def build_tracer_provider(service_name: str, endpoint: str) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    return provider


def init_otel(app) -> bool:
    """Install the OTLP tracer provider and instrument ``app``.

    Returns False (and touches nothing) unless CALC_OTEL_ENABLED=1.
    """
    if not otel_enabled():
        return False

    endpoint = os.getenv("CALC_OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
    service_name = os.getenv("CALC_SERVICE_NAME", "calcbot")
    trace.set_tracer_provider(build_tracer_provider(service_name, endpoint))
    FlaskInstrumentor().instrument_app(app, excluded_urls=UNTRACED_ROUTES)
    app.config["CALC_OTEL_ENABLED"] = True
    logger.info("OpenTelemetry enabled", extra={"extra": {"endpoint": endpoint, "service": service_name}})
    return True


def current_trace_id() -> Optional[str]:
    """Hex id of the active OTel span, for correlating request logs."""
    if not otel_enabled():
        return None
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return None
    return f"{ctx.trace_id:032x}"
