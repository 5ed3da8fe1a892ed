"""Tests for serialization helpers."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

from compliance_engine.models import (
    Channel,
    FinancialInputs,
    QueuedInputs,
    ReferenceEntity,
    ReferenceKind,
    Reminder,
    ReminderType,
    ThresholdStep,
)
from compliance_engine.serialization import (
    dataclass_to_dict,
    from_dict,
    serialize_value,
    to_dict,
    to_dict_fast,
)


class TestSerializeValue:
    """Tests for serialize_value."""

    def test_scalars(self) -> None:
        assert serialize_value(Decimal("4.50")) == "4.50"
        assert serialize_value(Channel.SLACK) == "SLACK"
        assert serialize_value(date(2025, 3, 31)) == "2025-03-31"
        assert serialize_value(time(9, 0)) == "09:00:00"
        assert serialize_value(datetime(2025, 5, 1, 9, 0, tzinfo=timezone.utc)) == "2025-05-01T09:00:00+00:00"
        assert serialize_value(3) == 3

    def test_containers(self) -> None:
        value = {"amounts": (Decimal("1.5"), Decimal("2")), "when": date(2025, 1, 1)}

        assert serialize_value(value) == {"amounts": ["1.5", "2"], "when": "2025-01-01"}


class TestToDict:
    """Tests for dataclass conversion."""

    def test_nested_dataclass(self) -> None:
        queued = QueuedInputs(
            queue_id="q-1",
            covenant_id="cov-test-001",
            facility_id="fac-test-001",
            inputs=FinancialInputs(Decimal("450"), Decimal("100"), date(2025, 3, 31)),
        )

        result = dataclass_to_dict(queued)

        assert result["inputs"]["numerator"] == "450"
        assert result["inputs"]["test_date"] == "2025-03-31"
        assert result["processed"] is False

    def test_fast_matches_flat(self) -> None:
        step = ThresholdStep(date(2025, 1, 1), Decimal("4.50"))

        assert to_dict_fast(step) == dataclass_to_dict(step) == {
            "effective_from": "2025-01-01",
            "threshold_value": "4.50",
        }

    def test_non_dataclass(self) -> None:
        assert to_dict({"a": 1}) == {"a": 1}
        assert to_dict(42) == {"value": "42"}


class TestFromDict:
    """Tests for rebuilding dataclasses."""

    def test_reminder(self) -> None:
        """Test that enums, datetimes and nested references are restored."""
        reminder = Reminder(
            reminder_id="rem-1",
            facility_id="fac-test-001",
            reference=ReferenceEntity(ReferenceKind.COVENANT_TEST, "test-1"),
            reminder_type=ReminderType.COVENANT_TEST_DUE,
            days_before=7,
            scheduled_for=datetime(2025, 4, 23, 9, 0, tzinfo=timezone.utc),
            channel=Channel.EMAIL,
            subject="Cure deadline 2025-04-30",
            notify_roles=["agent"],
        )

        restored = from_dict(Reminder, to_dict(reminder))

        assert restored == reminder
        assert isinstance(restored.reference, ReferenceEntity)
        assert restored.scheduled_for.tzinfo is not None

    def test_queued_inputs(self) -> None:
        queued = QueuedInputs(
            queue_id="q-1",
            covenant_id="cov-test-001",
            facility_id="fac-test-001",
            inputs=FinancialInputs(Decimal("450.25"), Decimal("100"), date(2025, 3, 31), submitted_by="cfo@acme.com"),
            queued_at=datetime(2025, 4, 2, tzinfo=timezone.utc),
        )

        restored = from_dict(QueuedInputs, to_dict(queued))

        assert restored == queued
        assert restored.inputs.numerator == Decimal("450.25")
        assert restored.inputs.period_end is None

    def test_unknown_keys_ignored(self) -> None:
        data = {"effective_from": "2025-01-01", "threshold_value": "4.5", "legacy": True}

        assert from_dict(ThresholdStep, data) == ThresholdStep(date(2025, 1, 1), Decimal("4.5"))
