import json
import logging
import os
import time
import uuid
from typing import Callable, Optional

from dotenv import load_dotenv
from flask import Flask, g, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from prometheus_client import CollectorRegistry, Counter, Histogram

from calcbot.calc_types import ERROR_KINDS
from calcbot.command_registry import CommandRegistry
from calcbot.commands import build_default_registry
from calcbot.http_routes import register_routes
from calcbot.observability import current_trace_id, init_otel

load_dotenv()

logger = logging.getLogger("calcbot")

EVALUATION_SOURCES = ("api", "interaction")
EVALUATION_OUTCOMES = ("ok", "missing_expression") + ERROR_KINDS

InteractionVerifier = Callable[[bytes, str, str], bool]


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - logging
        base = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "timestamp": int(record.created * 1000),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            base.update(record.extra)
        return json.dumps(base, separators=(",", ":"), default=str)


def configure_logging() -> None:
    level = os.getenv("CALC_LOG_LEVEL", "INFO").upper()
    use_json = os.getenv("CALC_LOG_JSON", "1") == "1"
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            JsonFormatter() if use_json else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logger.addHandler(handler)


def _build_limiter(app: Flask) -> Optional[Limiter]:
    if os.getenv("CALC_RATE_LIMIT_ENABLED", "1") != "1":
        return None
    return Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[os.getenv("CALC_RATE_LIMIT", "60 per minute")],
        storage_uri=os.getenv("CALC_RATE_LIMIT_STORAGE_URL", "memory://"),
    )


def _build_metrics(app: Flask) -> None:
    registry = CollectorRegistry(auto_describe=True)
    app.config["CALC_METRICS_REGISTRY"] = registry
    app.config["CALC_REQUEST_COUNT"] = Counter(
        "calc_requests_total",
        "Total requests",
        ["route", "method", "status"],
        registry=registry,
    )
    app.config["CALC_REQUEST_LATENCY"] = Histogram(
        "calc_request_latency_seconds",
        "Request latency",
        ["route", "method"],
        registry=registry,
    )
    app.config["CALC_ERROR_COUNT"] = Counter(
        "calc_errors_total",
        "Total errors",
        ["route", "method", "status"],
        registry=registry,
    )
    evaluations = Counter(
        "calc_evaluations_total",
        "Expression evaluations by outcome",
        ["source", "outcome"],
        registry=registry,
    )
    # Every outcome is exported at 0 from the start so rate() sees the first error.
    for source in EVALUATION_SOURCES:
        for outcome in EVALUATION_OUTCOMES:
            evaluations.labels(source, outcome)
    app.config["CALC_EVALUATION_COUNT"] = evaluations
    app.config["CALC_COMMAND_COUNT"] = Counter(
        "calc_commands_total",
        "Application commands dispatched",
        ["command", "status"],
        registry=registry,
    )


def create_app(
    verifier: Optional[InteractionVerifier] = None,
    registry: Optional[CommandRegistry] = None,
) -> Flask:
    configure_logging()
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("CALC_MAX_REQUEST_BYTES", "65536"))
    app.config["CALC_INTERACTION_VERIFIER"] = verifier
    app.config["CALC_COMMAND_REGISTRY"] = registry or build_default_registry()
    app.config["CALC_LIMITER"] = _build_limiter(app)
    app.config["CALC_RATE_LIMIT"] = os.getenv("CALC_RATE_LIMIT", "60 per minute")
    _build_metrics(app)
    init_otel(app)

    @app.before_request
    def start_request():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.request_start = time.time()
        g.otel_trace_id = current_trace_id()

    @app.after_request
    def finalize_request(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        route = request.url_rule.rule if request.url_rule else "unmatched"
        method = request.method
        status = str(response.status_code)
        duration = time.time() - getattr(g, "request_start", time.time())
        app.config["CALC_REQUEST_COUNT"].labels(route, method, status).inc()
        app.config["CALC_REQUEST_LATENCY"].labels(route, method).observe(duration)
        if response.status_code >= 500:
            app.config["CALC_ERROR_COUNT"].labels(route, method, status).inc()

        logger.info(
            "request",
            extra={
                "extra": {
                    "request_id": request_id,
                    "route": route,
                    "method": method,
                    "status": response.status_code,
                    "latency_ms": int(duration * 1000),
                    "otel_trace_id": getattr(g, "otel_trace_id", None),
                }
            },
        )
        return response

    register_routes(app)
    return app


def main() -> None:
    port = int(os.getenv("CALC_PORT", "8787"))
    host = os.getenv("CALC_HOST", "127.0.0.1")
    create_app().run(host=host, port=port, debug=False)


if __name__ == "__main__":
    main()
