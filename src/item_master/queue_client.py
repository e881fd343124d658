"""
Message queue access: the send contract, the SQS implementation and an
in-memory variant for tests and local runs.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from item_master.exceptions import ErrorContext, QueuePublishError
from item_master.logging_config import get_trace_id

logger = logging.getLogger(__name__)

SQS_MAX_BATCH_ENTRIES = 10

NON_RETRYABLE_CLIENT_ERRORS = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
    "InvalidParameterValue",
})

boto_config = Config(
    retries={"max_attempts": 1, "mode": "standard"},
    connect_timeout=5,
    read_timeout=20,
)


@dataclass(frozen=True)
class QueueMessage:
    id: str
    sku: str
    body: str
    attributes: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SendOutcome:
    """Per-entry result of a batch send."""
    id: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False


class QueueClient(Protocol):
    def send_batch(self, messages: list[QueueMessage]) -> list[SendOutcome]:
        """Send messages; raises QueuePublishError when the call as a whole fails."""
        ...


class AWSClientFactory:
    """Factory for creating AWS clients with proper configuration."""

    _sqs_clients: dict = {}

    @classmethod
    def get_sqs_client(cls, region_name: str, endpoint_url: Optional[str] = None):
        """Get or create an SQS client."""
        key = (region_name, endpoint_url)
        if key not in cls._sqs_clients:
            kwargs = {"config": boto_config, "region_name": region_name}
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            cls._sqs_clients[key] = boto3.client("sqs", **kwargs)
        return cls._sqs_clients[key]

    @classmethod
    def reset(cls):
        """Reset clients (useful for testing)."""
        cls._sqs_clients = {}


def _chunks(messages: list[QueueMessage], size: int) -> Iterable[list[QueueMessage]]:
    for start in range(0, len(messages), size):
        yield messages[start:start + size]


def _client_error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "ClientError")
    return type(error).__name__


class SqsQueueClient:
    """Sends messages with SendMessageBatch, ten entries per request."""

    def __init__(self, queue_url: str, client=None):
        self.queue_url = queue_url
        self.client = client

    def send_batch(self, messages: list[QueueMessage]) -> list[SendOutcome]:
        outcomes: list[SendOutcome] = []
        chunks = list(_chunks(messages, SQS_MAX_BATCH_ENTRIES))

        for index, chunk in enumerate(chunks):
            try:
                response = self.client.send_message_batch(
                    QueueUrl=self.queue_url,
                    Entries=[self._entry(message) for message in chunk],
                )
            except (BotoCoreError, ClientError) as e:
                code = _client_error_code(e)
                retryable = code not in NON_RETRYABLE_CLIENT_ERRORS
                if index == 0:
                    error = QueuePublishError(
                        message=f"SendMessageBatch failed: {e}",
                        queue_url=self.queue_url,
                        failed_count=len(messages),
                        context=ErrorContext(trace_id=get_trace_id()),
                        original_exception=e,
                    )
                    error.retryable = retryable
                    raise error from e

                # earlier chunks were accepted; report the rest entry by entry
                logger.error(
                    f"SendMessageBatch failed after {len(outcomes)} entries were sent: {e}"
                )
                unsent = [m for remaining in chunks[index:] for m in remaining]
                outcomes.extend(
                    SendOutcome(
                        id=message.id,
                        success=False,
                        error_code=code,
                        error_message=str(e),
                        retryable=retryable,
                    )
                    for message in unsent
                )
                return outcomes

            outcomes.extend(self._outcomes(chunk, response))

        return outcomes

    @staticmethod
    def _entry(message: QueueMessage) -> dict:
        entry = {"Id": message.id, "MessageBody": message.body}
        if message.attributes:
            entry["MessageAttributes"] = {
                name: {"DataType": "String", "StringValue": str(value)}
                for name, value in message.attributes.items()
                if value
            }
        return entry

    @staticmethod
    def _outcomes(chunk: list[QueueMessage], response: dict) -> list[SendOutcome]:
        succeeded = {entry["Id"] for entry in response.get("Successful", [])}
        failed = {entry["Id"]: entry for entry in response.get("Failed", [])}

        outcomes = []
        for message in chunk:
            if message.id in failed:
                entry = failed[message.id]
                outcomes.append(
                    SendOutcome(
                        id=message.id,
                        success=False,
                        error_code=entry.get("Code"),
                        error_message=entry.get("Message"),
                        retryable=not entry.get("SenderFault", False),
                    )
                )
            elif message.id in succeeded:
                outcomes.append(SendOutcome(id=message.id, success=True))
            else:
                outcomes.append(
                    SendOutcome(
                        id=message.id,
                        success=False,
                        error_code="MissingResult",
                        error_message="SQS returned no result for entry",
                        retryable=True,
                    )
                )
        return outcomes


class InMemoryQueueClient:
    """
    Queue client that records what it is sent.

    Failures can be scripted: whole calls that raise, SKUs that fail a set
    number of times with a retryable error, and SKUs that are always rejected.
    """

    def __init__(
        self,
        raise_on_calls: int = 0,
        transient_failures: Optional[dict[str, int]] = None,
        permanent_failures: Iterable[str] = (),
    ):
        self.sent: list[QueueMessage] = []
        self.calls: list[list[QueueMessage]] = []
        self.raise_on_calls = raise_on_calls
        self.transient_failures = {
            sku.upper(): count for sku, count in (transient_failures or {}).items()
        }
        self.permanent_failures = {sku.upper() for sku in permanent_failures}

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def sent_skus(self) -> list[str]:
        return [message.sku for message in self.sent]

    def send_batch(self, messages: list[QueueMessage]) -> list[SendOutcome]:
        self.calls.append(list(messages))

        if self.raise_on_calls > 0:
            self.raise_on_calls -= 1
            raise QueuePublishError(
                message="Simulated SQS outage",
                queue_url="memory://queue",
                failed_count=len(messages),
            )

        outcomes = []
        for message in messages:
            sku = message.sku.upper()
            if sku in self.permanent_failures:
                outcomes.append(
                    SendOutcome(
                        id=message.id,
                        success=False,
                        error_code="InvalidMessageContents",
                        error_message="Message rejected",
                        retryable=False,
                    )
                )
            elif self.transient_failures.get(sku, 0) > 0:
                self.transient_failures[sku] -= 1
                outcomes.append(
                    SendOutcome(
                        id=message.id,
                        success=False,
                        error_code="ServiceUnavailable",
                        error_message="Simulated throttling",
                        retryable=True,
                    )
                )
            else:
                self.sent.append(message)
                outcomes.append(SendOutcome(id=message.id, success=True))
        return outcomes
