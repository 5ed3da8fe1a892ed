"""Custom exception hierarchy for compliance-engine."""


class ComplianceEngineError(Exception):
    """Base exception for all compliance-engine errors."""


class FieldValidationError(ComplianceEngineError):
    """Validation failure carrying field-level messages.

    Parameters
    ----------
    message : str
        Summary message.
    field_errors : dict[str, str] | None
        Mapping of field name to an actionable message.
    """

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.field_errors: dict[str, str] = dict(field_errors or {})


class ConfigurationError(FieldValidationError):
    """Raised when a template, covenant or engine configuration is invalid."""


class InputError(FieldValidationError):
    """Raised when caller-supplied inputs (e.g. financial figures) are invalid."""


class IntegrityError(ComplianceEngineError):
    """Raised when stored data violates an engine invariant.

    Fatal for the affected facility: its recompute is paused.
    """


class TransientError(ComplianceEngineError):
    """Raised for retryable repository or network failures."""


class EntityNotFoundError(ComplianceEngineError):
    """Raised when a referenced entity does not exist."""


class ReferentialIntegrityError(EntityNotFoundError):
    """Raised when a foreign key reference is violated."""


class InvalidTransitionError(ComplianceEngineError):
    """Raised when an entity is in an invalid state for the operation."""


class WaiverConflictError(InvalidTransitionError):
    """Raised when an approval would overlap another approved waiver."""


class NotifierError(ComplianceEngineError):
    """Raised when a notifier cannot be set up or used."""
