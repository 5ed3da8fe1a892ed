"""Notifier interface."""

from typing import Protocol

from compliance_engine.models import FireInstruction


class Notifier(Protocol):
    """Hand-off point for reminders; delivery is not awaited."""

    def publish(self, instruction: FireInstruction) -> None: ...

    def close(self) -> None: ...
