from datetime import timedelta

from carenotify.domain.alert.models import EscalationLevel, EscalationRule
from carenotify.domain.enums.alert import AlertType, EscalationRole
from carenotify.domain.enums.notification import DeliveryChannel

_WS = DeliveryChannel.WEBSOCKET
_EMAIL = DeliveryChannel.EMAIL
_SMS = DeliveryChannel.SMS

_ADMIN = EscalationRole.ADMIN
_SENIOR = EscalationRole.SENIOR_ADMIN
_SYSTEM = EscalationRole.SYSTEM_ADMIN
_EMERGENCY = EscalationRole.EMERGENCY_CONTACT


def _level(minutes: float, roles: tuple[EscalationRole, ...], channels: tuple[DeliveryChannel, ...]) -> EscalationLevel:
    return EscalationLevel(delay=timedelta(minutes=minutes), recipient_roles=roles, channels=channels)


def default_escalation_rules() -> dict[AlertType, EscalationRule]:
    """Escalation ladder per alert type. Delays count from alert creation."""
    return {
        AlertType.CRITICAL_FAILURE_RATE: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS, _EMAIL)),
                _level(5, (_ADMIN, _SENIOR), (_WS, _EMAIL, _SMS)),
                _level(15, (_ADMIN, _SENIOR, _SYSTEM), (_WS, _EMAIL, _SMS)),
            ),
            cooldown=timedelta(minutes=30),
        ),
        AlertType.LOW_DELIVERY_RATE: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS, _EMAIL)),
                _level(10, (_ADMIN, _SENIOR), (_WS, _EMAIL)),
                _level(30, (_ADMIN, _SENIOR, _SYSTEM), (_WS, _EMAIL, _SMS)),
            ),
            cooldown=timedelta(hours=1),
        ),
        AlertType.ELEVATED_FAILURE_RATE: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS,)),
                _level(30, (_ADMIN, _SENIOR), (_WS, _EMAIL)),
            ),
            cooldown=timedelta(hours=1),
        ),
        AlertType.CHANNEL_CONSECUTIVE_FAILURES: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS, _EMAIL)),
                _level(5, (_ADMIN, _SENIOR), (_WS, _EMAIL, _SMS)),
            ),
            cooldown=timedelta(minutes=30),
        ),
        AlertType.CHANNEL_LOW_DELIVERY_RATE: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS,)),
                _level(30, (_ADMIN, _SENIOR), (_WS, _EMAIL)),
            ),
            cooldown=timedelta(hours=1),
        ),
        AlertType.SLOW_DELIVERY_TIME: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS,)),
                _level(30, (_ADMIN, _SENIOR), (_WS, _EMAIL)),
            ),
            cooldown=timedelta(hours=1),
        ),
        AlertType.SYSTEM_HEALTH_CRITICAL: EscalationRule(
            levels=(
                _level(0, (_ADMIN, _SENIOR), (_WS, _EMAIL, _SMS)),
                _level(3, (_ADMIN, _SENIOR, _SYSTEM), (_WS, _EMAIL, _SMS)),
                _level(10, (_ADMIN, _SENIOR, _SYSTEM, _EMERGENCY), (_WS, _EMAIL, _SMS)),
            ),
            cooldown=timedelta(minutes=30),
        ),
        AlertType.STUCK_NOTIFICATIONS: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS,)),
                _level(15, (_ADMIN, _SENIOR), (_WS, _EMAIL)),
            ),
            cooldown=timedelta(hours=1),
        ),
        AlertType.EXTERNAL_SERVICE_FAILURE: EscalationRule(
            levels=(
                _level(0, (_ADMIN,), (_WS, _EMAIL)),
                _level(5, (_ADMIN, _SENIOR), (_WS, _EMAIL, _SMS)),
                _level(20, (_ADMIN, _SENIOR, _SYSTEM), (_WS, _EMAIL, _SMS)),
            ),
            cooldown=timedelta(minutes=30),
        ),
    }
