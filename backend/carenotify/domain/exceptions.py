class DomainError(Exception):
    """Base for errors raised by the notification and alerting services."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """Unknown notification, delivery, alert or escalation rule (404)."""

    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} '{identifier}' not found")


class ValidationError(DomainError):
    """Rejected input such as an empty recipient list or bad thresholds (422)."""


class ConflictError(DomainError):
    """Operation already applied, e.g. a second acknowledgement (409)."""


class InvalidStateError(DomainError):
    """Operation not allowed in the current delivery or alert state (400)."""


class InfrastructureError(DomainError):
    """Notification store or provider infrastructure failure (500)."""
