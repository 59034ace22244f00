"""SQS event source carrying S3 object-created notifications."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote_plus

from core.config import LakeConfig
from core.errors import LakeConfigError, LakeStorageError, TransientStorageError
from core.logging_config import get_logger
from core.s3_uri import S3Location, is_s3_uri, parse_s3_uri
from core.types import CrawlEvent, ZoneName
from events.event_queue import EventBatch, QueueMessage
from storage.s3_store import create_aws_client

_LOGGER = get_logger(__name__)

_MAX_RECEIVE_MESSAGES = 10


class SqsEventSource:
    """Receive S3 notifications from SQS and map them onto lake zones."""

    def __init__(self, config: LakeConfig, client: Any = None) -> None:
        """Create an SQS event source.

        Args:
            config: Runtime config with ``event_queue_url`` and s3:// zones.
            client: Optional preconfigured SQS client.

        Raises:
            LakeConfigError: If no queue URL is configured.
        """
        if not config.event_queue_url:
            raise LakeConfigError(
                "No event queue configured. Set LAKE_EVENT_QUEUE_URL to an SQS queue URL."
            )
        self._queue_url = config.event_queue_url
        self._zones = _zone_locations(config)
        self._visibility_timeout = int(config.visibility_timeout_seconds)
        self._client = client if client is not None else create_aws_client("sqs", config)

    def receive(self, max_messages: int) -> list[QueueMessage[EventBatch]]:
        """Receive up to ten messages and parse their object-created records."""
        try:
            response = self._client.receive_message(
                QueueUrl=self._queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, _MAX_RECEIVE_MESSAGES)),
                VisibilityTimeout=self._visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
                WaitTimeSeconds=1,
            )
        except Exception as error:
            raise TransientStorageError(f"SQS receive failed: {error}.") from error
        messages: list[QueueMessage[EventBatch]] = []
        for raw_message in response.get("Messages", []):
            attributes = raw_message.get("Attributes", {})
            messages.append(
                QueueMessage(
                    receipt=str(raw_message["ReceiptHandle"]),
                    body=self.parse_notification(str(raw_message.get("Body", ""))),
                    delivery_count=int(attributes.get("ApproximateReceiveCount", 1)),
                )
            )
        return messages

    def ack(self, receipt: str) -> None:
        try:
            self._client.delete_message(QueueUrl=self._queue_url, ReceiptHandle=receipt)
        except Exception as error:
            raise LakeStorageError(f"SQS delete_message failed: {error}.") from error

    def parse_notification(self, body: str) -> EventBatch:
        """Convert an S3 notification body into crawl events.

        Test events, non-creation records and objects outside both
        zones produce no crawl events.
        """
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            _LOGGER.warning("event_notification_unparseable", body_length=len(body))
            return ()
        if not isinstance(payload, dict):
            return ()
        events: list[CrawlEvent] = []
        for record in payload.get("Records", []):
            event = self._event_from_record(record)
            if event is not None:
                events.append(event)
        return tuple(events)

    def _event_from_record(self, record: dict[str, Any]) -> CrawlEvent | None:
        if not str(record.get("eventName", "")).startswith("ObjectCreated:"):
            return None
        s3_payload = record.get("s3", {})
        bucket = str(s3_payload.get("bucket", {}).get("name", ""))
        object_payload = s3_payload.get("object", {})
        full_key = unquote_plus(str(object_payload.get("key", "")))
        for zone, location in self._zones:
            if bucket == location.bucket and full_key.startswith(location.prefix):
                return CrawlEvent(
                    zone=zone,
                    key=full_key[len(location.prefix) :],
                    size=int(object_payload.get("size", 0)),
                    observed_at=_parse_event_time(record.get("eventTime")),
                )
        _LOGGER.warning("event_outside_zones", bucket=bucket, key=full_key)
        return None


def _zone_locations(config: LakeConfig) -> list[tuple[ZoneName, S3Location]]:
    zones: list[tuple[ZoneName, S3Location]] = []
    if is_s3_uri(config.landing_uri):
        zones.append(("landing", parse_s3_uri(config.landing_uri)))
    if is_s3_uri(config.clean_uri):
        zones.append(("clean", parse_s3_uri(config.clean_uri)))
    # longest prefix first so nested zone roots resolve to the inner zone
    return sorted(zones, key=lambda item: len(item[1].prefix), reverse=True)


def _parse_event_time(raw_value: object) -> datetime:
    if isinstance(raw_value, str):
        try:
            return datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)
