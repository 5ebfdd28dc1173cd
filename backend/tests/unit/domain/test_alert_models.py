from datetime import timedelta

import pytest

from carenotify.domain.alert import AlertPayload, EscalationLevel, EscalationRule, default_escalation_rules
from carenotify.domain.enums.alert import AlertSeverity, AlertType, EscalationRole
from carenotify.domain.enums.notification import DeliveryChannel

pytestmark = pytest.mark.unit


def _payload(**overrides) -> AlertPayload:
    values = dict(
        type=AlertType.CHANNEL_CONSECUTIVE_FAILURES,
        severity=AlertSeverity.CRITICAL,
        message="Channel sms has 5 consecutive failures",
        data={"channel": "sms"},
    )
    values.update(overrides)
    return AlertPayload(**values)


class TestFingerprint:
    def test_stable_for_same_condition(self) -> None:
        a = _payload(details={"consecutive_failures": 5})
        b = _payload(message="Channel sms has 9 consecutive failures", details={"consecutive_failures": 9})

        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint().startswith("channel_consecutive_failures_critical_")

    def test_key_order_does_not_matter(self) -> None:
        a = _payload(data={"channel": "sms", "scope": "channel"})
        b = _payload(data={"scope": "channel", "channel": "sms"})
        assert a.fingerprint() == b.fingerprint()

    @pytest.mark.parametrize(
        "overrides",
        [{"data": {"channel": "email"}}, {"severity": AlertSeverity.WARNING}],
    )
    def test_differs_per_condition(self, overrides: dict) -> None:
        assert _payload().fingerprint() != _payload(**overrides).fingerprint()


def test_rule_levels_must_be_ordered() -> None:
    level = EscalationLevel(timedelta(minutes=5), (EscalationRole.ADMIN,), (DeliveryChannel.WEBSOCKET,))
    first = EscalationLevel(timedelta(0), (EscalationRole.ADMIN,), (DeliveryChannel.WEBSOCKET,))

    with pytest.raises(ValueError):
        EscalationRule(levels=(level, first), cooldown=timedelta(0))


def test_every_alert_type_has_a_default_rule() -> None:
    rules = default_escalation_rules()

    assert set(rules) == set(AlertType)
    for rule in rules.values():
        assert rule.levels[0].delay == timedelta(0)
