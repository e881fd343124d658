"""Tests for request parsing."""

import base64
import json

from item_master.classifier import RequestSource
from item_master.exceptions import RequestParseError
from item_master.request_parser import RequestParser


class TestDirectInvocation:
    """Tests for direct payloads."""

    def test_skus_list(self):
        """Test a skus array."""
        result = RequestParser().parse({"skus": ["A", "B"]}, RequestSource.DIRECT_INVOCATION)
        assert result.is_success
        assert result.value.get_all_skus() == ["A", "B"]

    def test_keys_are_case_insensitive(self):
        """Test SKUS and SkusString keys are accepted."""
        result = RequestParser().parse({"SKUS": ["A"], "SkusString": "B,C"}, RequestSource.DIRECT_INVOCATION)
        assert result.value.get_all_skus() == ["A", "B", "C"]

    def test_top_level_array(self):
        """Test a bare JSON array becomes the SKU list."""
        result = RequestParser().parse('["A", "B"]', RequestSource.DIRECT_INVOCATION)
        assert result.value.get_all_skus() == ["A", "B"]

    def test_unknown_source_parsed_as_body(self):
        """Test unknown sources fall back to body parsing."""
        result = RequestParser().parse({"skus": ["A"]}, RequestSource.UNKNOWN)
        assert result.value.get_all_skus() == ["A"]


class TestApiGateway:
    """Tests for API Gateway bodies."""

    def test_json_body(self):
        """Test a JSON string body."""
        event = {"body": json.dumps({"skus": ["A"]}), "requestContext": {}}
        result = RequestParser().parse(event, RequestSource.API_GATEWAY)
        assert result.value.get_all_skus() == ["A"]

    def test_base64_body(self):
        """Test a base64-encoded body is decoded first."""
        body = base64.b64encode(json.dumps({"skusString": "A, B"}).encode()).decode()
        event = {"body": body, "isBase64Encoded": True}
        result = RequestParser().parse(event, RequestSource.API_GATEWAY)
        assert result.value.get_all_skus() == ["A", "B"]

    def test_missing_body(self):
        """Test a missing body is an empty request."""
        result = RequestParser().parse({"requestContext": {}}, RequestSource.API_GATEWAY)
        assert result.value.get_all_skus() == []


class TestEventBridge:
    """Tests for scheduler events."""

    def test_detail(self):
        """Test SKUs are read from detail."""
        event = {"source": "aws.events", "detail": {"skus": ["A"]}}
        result = RequestParser().parse(event, RequestSource.EVENTBRIDGE)
        assert result.value.get_all_skus() == ["A"]

    def test_detail_as_string(self):
        """Test a JSON string detail."""
        event = {"source": "aws.events", "detail": '{"skusString": "[\\"A\\", \\"B\\"]"}'}
        result = RequestParser().parse(event, RequestSource.EVENTBRIDGE)
        assert result.value.get_all_skus() == ["A", "B"]

    def test_enveloped_detail(self):
        """Test detail nested inside an envelope."""
        event = {"payload": {"source": "aws.events", "detail": {"skus": ["Z"]}}}
        result = RequestParser().parse(event, RequestSource.EVENTBRIDGE)
        assert result.value.get_all_skus() == ["Z"]

    def test_scheduled_event_without_detail(self):
        """Test a scheduled tick without detail is an empty request."""
        result = RequestParser().parse({"detail-type": "Scheduled Event"}, RequestSource.EVENTBRIDGE)
        assert result.value.get_all_skus() == []


class TestMalformedPayloads:
    """Tests for lenient and strict handling."""

    def test_lenient_returns_empty_request(self):
        """Test malformed JSON becomes an empty request by default."""
        event = {"body": "{not json", "requestContext": {}}
        result = RequestParser().parse(event, RequestSource.API_GATEWAY)
        assert result.is_success
        assert result.value.get_all_skus() == []

    def test_strict_returns_failure(self):
        """Test strict mode rejects malformed JSON."""
        event = {"body": "{not json", "requestContext": {}}
        result = RequestParser(strict=True).parse(event, RequestSource.API_GATEWAY)
        assert result.is_failure
        assert "Malformed api_gateway payload" in result.error
        assert isinstance(result.exception, RequestParseError)

    def test_strict_rejects_bad_base64(self):
        """Test invalid base64 is a parse failure."""
        event = {"body": "***", "isBase64Encoded": True}
        result = RequestParser(strict=True).parse(event, RequestSource.API_GATEWAY)
        assert result.is_failure

    def test_strict_rejects_scalar_body(self):
        """Test a JSON scalar body is not a request."""
        result = RequestParser(strict=True).parse("42", RequestSource.DIRECT_INVOCATION)
        assert result.is_failure
