"""
Extracts a ProcessSkusRequest from a classified invocation payload.

Parsing returns a Result instead of raising. In the default, lenient mode a
malformed payload becomes an empty request (which triggers the latest-items
path); in strict mode it becomes a failure.
"""

import base64
import binascii
import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from item_master.classifier import RequestSource
from item_master.exceptions import ErrorContext, RequestParseError
from item_master.logging_config import get_trace_id
from item_master.models import ProcessSkusRequest
from item_master.result import Result

logger = logging.getLogger(__name__)

_FIELD_NAMES = {"skus": "skus", "skusstring": "skusString", "skus_string": "skusString"}


def _decode(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        return json.loads(raw)
    return raw


def _normalize_keys(data: dict) -> dict:
    """Request keys are matched case-insensitively."""
    normalized = {}
    for key, value in data.items():
        target = _FIELD_NAMES.get(str(key).lower())
        if target is not None and target not in normalized:
            normalized[target] = value
    return normalized


class RequestParser:
    """Reads the SKU request out of each supported trigger shape."""

    def __init__(self, strict: bool = False):
        self.strict = strict

    def parse(self, payload: Any, source: RequestSource) -> Result[ProcessSkusRequest]:
        try:
            request = self._parse(payload, source)
        except (ValueError, TypeError, binascii.Error, PydanticValidationError) as e:
            error = RequestParseError(
                message=f"Malformed {source.value} payload: {e}",
                context=ErrorContext(
                    trace_id=get_trace_id(),
                    additional_data={"request_source": source.value},
                ),
                original_exception=e,
            )
            if self.strict:
                logger.warning(
                    f"Rejecting malformed request: {error.message}",
                    extra={"error": error.to_dict()},
                )
                return Result.fail(error.message, exception=error)

            logger.warning(
                f"Failed to parse request, using empty request: {error.message}",
                extra={"request_source": source.value},
            )
            return Result.ok(ProcessSkusRequest())

        return Result.ok(request)

    def _parse(self, payload: Any, source: RequestSource) -> ProcessSkusRequest:
        if source == RequestSource.HEALTH_CHECK:
            return ProcessSkusRequest()

        data = _decode(payload)

        if source == RequestSource.EVENTBRIDGE:
            return self._from_eventbridge(data)
        if source == RequestSource.API_GATEWAY:
            return self._from_api_gateway(data)
        return self._from_body(data)

    def _from_eventbridge(self, data: Any) -> ProcessSkusRequest:
        if not isinstance(data, dict):
            return self._from_body(data)
        if "detail" not in data:
            for key in ("event", "payload"):
                inner = data.get(key)
                if inner is not None:
                    inner = _decode(inner)
                    if isinstance(inner, dict) and "detail" in inner:
                        data = inner
                        break
        detail = data.get("detail")
        if detail is None:
            return ProcessSkusRequest()
        return self._from_body(_decode(detail))

    def _from_api_gateway(self, data: dict) -> ProcessSkusRequest:
        body = data.get("body")
        if body is None:
            return ProcessSkusRequest()
        if data.get("isBase64Encoded") and isinstance(body, str):
            body = base64.b64decode(body, validate=True).decode("utf-8")
        return self._from_body(_decode(body))

    def _from_body(self, data: Any) -> ProcessSkusRequest:
        if data is None:
            return ProcessSkusRequest()
        if isinstance(data, list):
            return ProcessSkusRequest(skus=data)
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        return ProcessSkusRequest.model_validate(_normalize_keys(data))
