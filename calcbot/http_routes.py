from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Tuple

from flask import Response, current_app, g, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from calcbot.interactions import handle_interaction, parse_invocation
from calcbot.tools.math import calculate
from calcbot.tracer import get_tracer

logger = logging.getLogger("calcbot.http")


def register_routes(app) -> None:
    limiter = app.config.get("CALC_LIMITER")
    rate_limit = app.config.get("CALC_RATE_LIMIT")

    def _limit_route(func):
        if limiter:
            return limiter.limit(rate_limit)(func)
        return func

    def _production() -> bool:
        return os.getenv("CALC_ENV", "development").lower() == "production"

    def _api_enabled() -> bool:
        return os.getenv("CALC_ENABLE_API", "1") == "1"

    def _auth_required() -> bool:
        if _production():
            return True
        return os.getenv("CALC_REQUIRE_BEARER", "0") == "1"

    def require_bearer() -> Tuple[bool, Dict[str, Any] | None]:
        if not _auth_required():
            return True, None
        token = os.getenv("CALC_BEARER_TOKEN", "")
        got = request.headers.get("Authorization", "")
        if not token or got != f"Bearer {token}":
            return False, {"error": {"message": "Unauthorized", "type": "auth_error", "code": 401}}
        return True, None

    def _api_disabled():
        return jsonify({"error": {"message": "API disabled", "type": "service_unavailable", "code": 503}}), 503

    def _verify_interaction(body: bytes) -> bool:
        verifier = current_app.config.get("CALC_INTERACTION_VERIFIER")
        if verifier is None:
            if _production():
                logger.error("No interaction verifier configured in production")
                return False
            return True
        signature = request.headers.get("X-Signature-Ed25519", "")
        timestamp = request.headers.get("X-Signature-Timestamp", "")
        if not signature or not timestamp:
            return False
        try:
            return bool(verifier(body, signature, timestamp))
        except Exception:
            logger.warning("Interaction verifier raised", exc_info=True)
            return False

    def _count_evaluation(source: str, outcome: Dict[str, Any]) -> None:
        label = "ok" if outcome["status"] == "ok" else outcome["error"]
        current_app.config["CALC_EVALUATION_COUNT"].labels(source, label).inc()

    def _record_receipt(route: str, expression: Any, outcome: Dict[str, Any], started: float):
        tracer = get_tracer()
        trace_handle = tracer.start_trace({"route": route, "request_id": getattr(g, "request_id", None)})
        if trace_handle:
            tracer.record_evaluation(
                trace_handle.trace_id,
                expression if isinstance(expression, str) else "",
                outcome["status"],
                error=outcome.get("error"),
                latency_ms=int((time.time() - started) * 1000),
            )
        return trace_handle

    @app.errorhandler(404)
    def not_found(_exc):
        return Response("Not Found.", status=404, mimetype="text/plain")

    @app.get("/")
    def index():
        application_id = os.getenv("CALC_DISCORD_APPLICATION_ID", "")
        return Response(f"\U0001f44b {application_id}", mimetype="text/plain")

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "calcbot"}

    @app.get("/ready")
    def ready():
        if not _api_enabled():
            return {"status": "disabled", "service": "calcbot"}, 503
        if not current_app.config["CALC_COMMAND_REGISTRY"].list_commands():
            return {"status": "unready", "service": "calcbot", "reason": "no_commands"}, 503
        return {"status": "ready", "service": "calcbot"}

    @app.get("/metrics")
    def metrics():
        if os.getenv("CALC_METRICS_ENABLED", "1") != "1":
            return {"status": "disabled", "service": "calcbot"}, 503
        ok, err = require_bearer()
        if not ok:
            return jsonify(err), 401
        registry = current_app.config["CALC_METRICS_REGISTRY"]
        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    @app.post("/v1/calculate")
    @_limit_route
    def calculate_route():
        if not _api_enabled():
            return _api_disabled()
        ok, err = require_bearer()
        if not ok:
            return jsonify(err), 401

        payload = request.get_json(force=True, silent=True) or {}
        expression = payload.get("expression") if isinstance(payload, dict) else None

        started = time.time()
        outcome = calculate(expression)
        _count_evaluation("api", outcome)
        trace_handle = _record_receipt("/v1/calculate", expression, outcome, started)

        body = dict(outcome)
        body["request_id"] = trace_handle.trace_id if trace_handle else getattr(g, "request_id", None)
        return jsonify(body), 200 if outcome["status"] == "ok" else 400

    @app.get("/v1/commands")
    def commands_list():
        if not _api_enabled():
            return _api_disabled()
        ok, err = require_bearer()
        if not ok:
            return jsonify(err), 401
        registry = current_app.config["CALC_COMMAND_REGISTRY"]
        commands = [command.to_payload() for command in registry.list_commands()]
        return jsonify({"count": len(commands), "commands": commands}), 200

    @app.post("/interactions")
    @_limit_route
    def interactions():
        body = request.get_data(cache=True)
        if not _verify_interaction(body):
            return Response("Bad request signature.", status=401, mimetype="text/plain")
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            return jsonify({"error": "Invalid JSON"}), 400

        registry = current_app.config["CALC_COMMAND_REGISTRY"]
        started = time.time()

        def on_result(invocation, result):
            outcome = result.get("evaluation")
            if outcome is None:
                return
            _count_evaluation("interaction", outcome)
            _record_receipt("/interactions", invocation.options.get("expression"), outcome, started)

        response_body, status = handle_interaction(payload, registry, on_result=on_result)

        invocation = parse_invocation(payload) if isinstance(payload, dict) else None
        if invocation:
            # Names come from the caller; only registered ones become label values.
            label = invocation.name if registry.get(invocation.name) else "unknown"
            current_app.config["CALC_COMMAND_COUNT"].labels(label, str(status)).inc()
        return jsonify(response_body), status
