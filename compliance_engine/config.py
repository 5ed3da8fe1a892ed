"""Configuration management for compliance-engine."""

from dataclasses import dataclass, field
from datetime import time
from typing import Any

from compliance_engine.exceptions import ConfigurationError


@dataclass
class KafkaConfig:
    """Kafka producer configuration for the reminder notifier."""

    bootstrap_servers: str = "localhost:9092"
    acks: str = "all"
    linger_ms: int = 5
    retries: int = 3
    topic: str = "compliance.reminders"

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "linger.ms": self.linger_ms,
            "retries": self.retries,
        }


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "compliance"
    user: str = "postgres"
    password: str = "postgres"

    @property
    def connection_string(self) -> str:
        """Get connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class SchedulerConfig:
    """Obligation scheduler settings."""

    due_soon_days: int = 14
    lookahead_months: int = 3


@dataclass
class EvaluationConfig:
    """Covenant evaluation settings."""

    ratio_places: int = 2
    percentage_places: int = 2
    waiver_request_window_days: int = 30


@dataclass
class RecomputeConfig:
    """Recompute job settings."""

    max_workers: int = 4
    max_retries: int = 3
    backoff_seconds: float = 0.5
    tick_interval_seconds: float = 86400.0


@dataclass
class EngineConfig:
    """Main configuration for compliance-engine."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    recompute: RecomputeConfig = field(default_factory=RecomputeConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    reminder_send_time: time = time(9, 0)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check value ranges, raising ConfigurationError with field messages."""
        errors: dict[str, str] = {}
        if self.scheduler.due_soon_days < 0:
            errors["scheduler.due_soon_days"] = "must be >= 0"
        if self.scheduler.lookahead_months < 0:
            errors["scheduler.lookahead_months"] = "must be >= 0"
        if self.evaluation.ratio_places < 0:
            errors["evaluation.ratio_places"] = "must be >= 0"
        if self.evaluation.percentage_places < 0:
            errors["evaluation.percentage_places"] = "must be >= 0"
        if self.evaluation.waiver_request_window_days < 0:
            errors["evaluation.waiver_request_window_days"] = "must be >= 0"
        if self.recompute.max_workers < 1:
            errors["recompute.max_workers"] = "must be >= 1"
        if self.recompute.max_retries < 0:
            errors["recompute.max_retries"] = "must be >= 0"
        if self.recompute.backoff_seconds < 0:
            errors["recompute.backoff_seconds"] = "must be >= 0"
        if errors:
            raise ConfigurationError("Invalid engine configuration", errors)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        import os

        def _int(name: str, default: int) -> int:
            raw = os.getenv(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid integer for {name}", {name: f"expected an integer, got {raw!r}"}
                ) from None

        def _float(name: str, default: float) -> float:
            raw = os.getenv(name)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid number for {name}", {name: f"expected a number, got {raw!r}"}
                ) from None

        scheduler = SchedulerConfig(
            due_soon_days=_int("COMPLIANCE_DUE_SOON_DAYS", 14),
            lookahead_months=_int("COMPLIANCE_LOOKAHEAD_MONTHS", 3),
        )

        evaluation = EvaluationConfig(
            ratio_places=_int("COMPLIANCE_RATIO_PLACES", 2),
            percentage_places=_int("COMPLIANCE_PERCENTAGE_PLACES", 2),
            waiver_request_window_days=_int("COMPLIANCE_WAIVER_WINDOW_DAYS", 30),
        )

        recompute = RecomputeConfig(
            max_workers=_int("COMPLIANCE_MAX_WORKERS", 4),
            max_retries=_int("COMPLIANCE_MAX_RETRIES", 3),
            backoff_seconds=_float("COMPLIANCE_BACKOFF_SECONDS", 0.5),
            tick_interval_seconds=_float("COMPLIANCE_TICK_INTERVAL", 86400.0),
        )

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            topic=os.getenv("KAFKA_REMINDER_TOPIC", "compliance.reminders"),
        )

        postgres = PostgresConfig(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=_int("POSTGRES_PORT", 5432),
            database=os.getenv("POSTGRES_DB", "compliance"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", "postgres"),
        )

        send_time_str = os.getenv("COMPLIANCE_REMINDER_SEND_TIME")
        if send_time_str:
            try:
                send_time = time.fromisoformat(send_time_str)
            except ValueError:
                raise ConfigurationError(
                    "Invalid reminder send time",
                    {"COMPLIANCE_REMINDER_SEND_TIME": f"expected HH:MM, got {send_time_str!r}"},
                ) from None
        else:
            send_time = time(9, 0)

        return cls(
            scheduler=scheduler,
            evaluation=evaluation,
            recompute=recompute,
            kafka=kafka,
            postgres=postgres,
            reminder_send_time=send_time,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
