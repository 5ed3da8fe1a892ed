"""Notifiers receiving reminder fire instructions."""

from compliance_engine.notifiers.base import Notifier
from compliance_engine.notifiers.console import ConsoleNotifier
from compliance_engine.notifiers.kafka import KafkaNotifier
from compliance_engine.notifiers.queue import QueueNotifier

__all__ = ["ConsoleNotifier", "KafkaNotifier", "Notifier", "QueueNotifier"]
