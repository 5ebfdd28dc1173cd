from carenotify.domain.exceptions import ConflictError, NotFoundError


class AlertNotFoundError(NotFoundError):
    def __init__(self, alert_id: str) -> None:
        super().__init__("Alert", alert_id)


class AlertAlreadyAcknowledgedError(ConflictError):
    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert '{alert_id}' is already acknowledged")


class AlertAlreadyResolvedError(ConflictError):
    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert '{alert_id}' is already resolved")


class EscalationRuleNotFoundError(NotFoundError):
    def __init__(self, alert_type: str) -> None:
        super().__init__("EscalationRule", alert_type)
