"""
AWS Lambda handler for the item master pipeline.
Accepts API Gateway, EventBridge and direct invocations, processes the
requested SKUs and publishes valid items to SQS.

Dependencies are built once per container and reused across invocations,
so the SQS circuit breaker keeps its state while the container is warm.
"""

import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional

from item_master.classifier import RequestSource
from item_master.clock import Deadline
from item_master.container import Dependencies, build_dependencies
from item_master.exceptions import ItemMasterError
from item_master.logging_config import LogContext, configure_logging, set_trace_id
from item_master.queue_client import AWSClientFactory
from item_master.settings import load_settings

logger = configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

JSON_HEADERS = {"Content-Type": "application/json"}
HEALTH_MESSAGE = "Lambda function is operational"

_dependencies: Optional[Dependencies] = None


def get_dependencies() -> Dependencies:
    """Build dependencies on first use; ConfigurationError propagates and fails the cold start."""
    global _dependencies
    if _dependencies is None:
        settings = load_settings()
        configure_logging(level=settings.log_level)
        _dependencies = build_dependencies(settings)
    return _dependencies


def reset_dependencies() -> None:
    """Drop cached dependencies (useful for testing)."""
    global _dependencies
    _dependencies = None
    AWSClientFactory.reset()


def handler(event: Any, context: Any) -> dict:
    """Main Lambda entry point."""
    return handle_invocation(event, context, get_dependencies())


def handle_invocation(event: Any, context: Any, dependencies: Dependencies) -> dict:
    """
    Process one invocation with the given dependencies.

    Health checks short-circuit before any warehouse, audit or queue access.
    Every response body carries the trace ID.
    """
    start_time = time.perf_counter()
    aws_request_id = getattr(context, "aws_request_id", None) if context else None
    trace_id = set_trace_id(aws_request_id)

    with LogContext(trace_id=trace_id):
        source = dependencies.classifier.classify(event)
        logger.info(
            "Lambda invocation started",
            extra={"event_type": "lambda_start", "request_source": source.value},
        )

        if source == RequestSource.HEALTH_CHECK:
            return build_response(200, health_check_body(trace_id), start_time)

        try:
            parsed = dependencies.parser.parse(event, source)
            if parsed.is_failure:
                return build_response(400, error_body(parsed.error, trace_id), start_time)

            deadline = compute_deadline(
                context, dependencies.settings.deadline_safety_margin_ms
            )
            result = dependencies.orchestrator.process(parsed.value, deadline)

            if result.is_failure:
                return build_response(500, error_body(result.error, trace_id), start_time)

            return build_response(
                200,
                {"success": True, "data": result.value.to_dict(), "traceId": trace_id},
                start_time,
            )

        except ItemMasterError as e:
            logger.error(
                f"Item master error: {e.message}",
                extra={"error": e.to_dict()},
            )
            return build_response(
                500 if e.retryable else 400,
                error_body(e.message, trace_id),
                start_time,
            )

        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return build_response(
                500,
                error_body(f"Internal error: {type(e).__name__}: {e}", trace_id),
                start_time,
            )


def compute_deadline(context: Any, safety_margin_ms: int) -> Deadline:
    """Remaining invocation time minus the safety margin; the whole budget when less remains."""
    get_remaining = getattr(context, "get_remaining_time_in_millis", None) if context else None
    if get_remaining is None:
        return Deadline.none()

    remaining_ms = get_remaining()
    if remaining_ms > safety_margin_ms:
        return Deadline.after_ms(remaining_ms - safety_margin_ms)
    return Deadline.after_ms(remaining_ms)


def health_check_body(trace_id: str) -> dict:
    return {
        "status": "healthy",
        "message": HEALTH_MESSAGE,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "health_check",
        "traceId": trace_id,
    }


def error_body(message: str, trace_id: str) -> dict:
    return {"success": False, "data": None, "error": message, "traceId": trace_id}


def build_response(status_code: int, body: dict, start_time: float) -> dict:
    """Build Lambda response with timing metadata."""
    duration_ms = (time.perf_counter() - start_time) * 1000

    body["durationMs"] = round(duration_ms, 2)

    logger.info(
        "Lambda invocation complete",
        extra={
            "event_type": "lambda_complete",
            "extra_data": {"status_code": status_code},
            "duration_ms": round(duration_ms, 2),
        },
    )

    return {
        "statusCode": status_code,
        "headers": dict(JSON_HEADERS),
        "body": json.dumps(body, default=str),
    }
