"""
Classifies raw Lambda invocation payloads by trigger shape.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

SCHEDULER_SOURCE_PREFIX = "aws."
SCHEDULER_HEADER_PREFIXES = ("x-amz-scheduler", "x-eventbridge")
ENVELOPE_KEYS = ("event", "payload")


class RequestSource(str, Enum):
    HEALTH_CHECK = "health_check"
    API_GATEWAY = "api_gateway"
    EVENTBRIDGE = "eventbridge"
    DIRECT_INVOCATION = "direct_invocation"
    UNKNOWN = "unknown"


class _Unparseable:
    pass


_UNPARSEABLE = _Unparseable()


def _load(payload: Any) -> Any:
    """Decode string payloads; anything else is already structured."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return _UNPARSEABLE
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return _UNPARSEABLE
    return payload


def _is_empty(payload: Any) -> bool:
    if payload is None:
        return True
    if isinstance(payload, (str, bytes, bytearray)):
        text = payload.decode("utf-8", "replace") if isinstance(payload, (bytes, bytearray)) else payload
        return text.strip() in ("", "{}", "null")
    return isinstance(payload, dict) and not payload


def _has_scheduler_marker(data: dict) -> bool:
    source = data.get("source")
    if isinstance(source, str):
        lowered = source.lower()
        if lowered.startswith(SCHEDULER_SOURCE_PREFIX) or "eventbridge" in lowered:
            return True

    if "detail-type" in data:
        return True

    headers = data.get("headers")
    if isinstance(headers, dict):
        for name in headers:
            if str(name).lower().startswith(SCHEDULER_HEADER_PREFIXES):
                return True
    return False


def _is_gateway_request(data: dict) -> bool:
    context = data.get("requestContext")
    if not isinstance(context, dict):
        return False
    return bool(context.get("requestId")) and bool(context.get("stage"))


def _envelope(data: dict) -> Optional[dict]:
    for key in ENVELOPE_KEYS:
        inner = data.get(key)
        if isinstance(inner, str):
            inner = _load(inner)
        if isinstance(inner, dict):
            return inner
    return None


class RequestSourceClassifier:
    """
    Labels a payload as health check, API Gateway, EventBridge, direct
    invocation or unknown. Never raises.
    """

    def classify(self, payload: Any) -> RequestSource:
        try:
            return self._classify(payload)
        except Exception as e:
            logger.warning(
                f"Request source detection failed, defaulting to direct invocation: {e}"
            )
            return RequestSource.DIRECT_INVOCATION

    def _classify(self, payload: Any) -> RequestSource:
        if _is_empty(payload):
            return RequestSource.HEALTH_CHECK

        data = _load(payload)
        if data is _UNPARSEABLE:
            return RequestSource.UNKNOWN
        if _is_empty(data):
            return RequestSource.HEALTH_CHECK
        if not isinstance(data, dict):
            return RequestSource.DIRECT_INVOCATION

        envelope = _envelope(data)
        if _has_scheduler_marker(data) or (envelope is not None and _has_scheduler_marker(envelope)):
            return RequestSource.EVENTBRIDGE

        if _is_gateway_request(data):
            return RequestSource.API_GATEWAY

        return RequestSource.DIRECT_INVOCATION
