from carenotify.domain.exceptions import InvalidStateError, NotFoundError, ValidationError


class NotificationNotFoundError(NotFoundError):
    def __init__(self, notification_id: str) -> None:
        super().__init__("Notification", notification_id)


class DeliveryNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__("Delivery", identifier)


class NotificationValidationError(ValidationError):
    pass


class InvalidTransitionError(InvalidStateError):
    """A delivery state change that the state machine does not allow."""

    pass
