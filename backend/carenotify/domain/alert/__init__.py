from carenotify.domain.alert.exceptions import (
    AlertAlreadyAcknowledgedError,
    AlertAlreadyResolvedError,
    AlertNotFoundError,
    EscalationRuleNotFoundError,
)
from carenotify.domain.alert.models import (
    Alert,
    AlertAcknowledgement,
    AlertPayload,
    AlertResolution,
    AlertStatistics,
    EscalationLevel,
    EscalationRule,
)
from carenotify.domain.alert.rules import default_escalation_rules

__all__ = [
    "Alert",
    "AlertAcknowledgement",
    "AlertAlreadyAcknowledgedError",
    "AlertAlreadyResolvedError",
    "AlertNotFoundError",
    "AlertPayload",
    "AlertResolution",
    "AlertStatistics",
    "EscalationLevel",
    "EscalationRule",
    "EscalationRuleNotFoundError",
    "default_escalation_rules",
]
