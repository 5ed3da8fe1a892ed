"""Kafka notifier publishing reminder fire instructions."""

import json
import logging
from dataclasses import dataclass
from typing import Any

from confluent_kafka import KafkaException, Producer

from compliance_engine.config import KafkaConfig
from compliance_engine.exceptions import NotifierError
from compliance_engine.logging import log_context
from compliance_engine.models import FireInstruction
from compliance_engine.serialization import to_dict

logger = logging.getLogger(__name__)

QUEUE_FULL_WAIT_SECONDS = 1.0


@dataclass
class ProducerStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


class KafkaNotifier:
    """Publish fire instructions to a Kafka topic, keyed by facility id.

    Publishing is fire-and-forget: delivery failures are counted and logged
    by the delivery callback and never reach the caller.
    """

    def __init__(self, config: KafkaConfig | str) -> None:
        """Initialize Kafka notifier.

        Parameters
        ----------
        config : KafkaConfig | str
            Kafka configuration or bootstrap servers string.
        """
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.topic = config.topic
        self.producer = self._create_producer()
        self.stats = ProducerStats()

    def _create_producer(self) -> Producer:
        """Create Kafka producer with configuration."""
        try:
            return Producer(self.config.to_dict())
        except KafkaException as exc:
            raise NotifierError(f"Cannot create Kafka producer: {exc}") from exc

    def _delivery_callback(self, err: Any, msg: Any) -> None:
        if err:
            self.stats.failed += 1
            key = msg.key().decode("utf-8") if msg is not None and msg.key() else None
            logger.error("Reminder delivery failed: %s", err, extra=log_context(facility_id=key))
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    @staticmethod
    def _headers(instruction: FireInstruction) -> list[tuple[str, bytes]]:
        # Lets consumers route by channel without decoding the payload
        return [
            ("reminder_type", instruction.reminder_type.value.encode("utf-8")),
            ("channel", instruction.channel.value.encode("utf-8")),
            ("reminder_id", instruction.reminder_id.encode("utf-8")),
        ]

    def publish(self, instruction: FireInstruction) -> None:
        """Send a single fire instruction without waiting for delivery.

        When the producer's local queue is full, pending delivery reports
        are served once and the send is retried; a second refusal is counted
        as a failed delivery.
        """
        message = {
            "topic": self.topic,
            "key": instruction.facility_id.encode("utf-8"),
            "value": json.dumps(to_dict(instruction), ensure_ascii=False, default=str).encode("utf-8"),
            "headers": self._headers(instruction),
            "callback": self._delivery_callback,
        }
        try:
            self.producer.produce(**message)
        except BufferError:
            self.producer.poll(QUEUE_FULL_WAIT_SECONDS)
            try:
                self.producer.produce(**message)
            except BufferError:
                self.stats.failed += 1
                logger.error(
                    "Kafka queue full, reminder %s dropped",
                    instruction.reminder_id,
                    extra=log_context(facility_id=instruction.facility_id),
                )
                return
        self.stats.sent += 1
        self.producer.poll(0)

    def flush(self, timeout: float = 30.0) -> int:
        """Wait for outstanding deliveries; return how many are still queued."""
        return self.producer.flush(timeout)

    def close(self) -> None:
        remaining = self.flush()
        logger.info(
            "Kafka notifier closed: sent=%d, delivered=%d, failed=%d, undelivered=%s",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
            remaining,
        )
