from carenotify.core.metrics.base import BaseMetrics


class AlertMetrics(BaseMetrics):
    """Metrics for the monitor and the alert escalation engine."""

    def _create_instruments(self) -> None:
        self.alerts_raised = self._meter.create_counter(
            name="alerts.raised.total", description="Alerts created", unit="1"
        )

        self.alerts_deduplicated = self._meter.create_counter(
            name="alerts.deduplicated.total", description="Alert payloads merged into an active alert", unit="1"
        )

        self.alerts_suppressed = self._meter.create_counter(
            name="alerts.suppressed.total", description="Alerts dropped during cooldown", unit="1"
        )

        self.escalations_fired = self._meter.create_counter(
            name="alerts.escalations.total", description="Escalation levels fired", unit="1"
        )

        self.escalation_failures = self._meter.create_counter(
            name="alerts.escalation.failures.total", description="Escalation levels that failed to notify", unit="1"
        )

        self.alerts_acknowledged = self._meter.create_counter(
            name="alerts.acknowledged.total", description="Alerts acknowledged", unit="1"
        )

        self.alerts_resolved = self._meter.create_counter(
            name="alerts.resolved.total", description="Alerts resolved", unit="1"
        )

        self.stale_alerts = self._meter.create_counter(
            name="alerts.stale.total", description="Stale alert signals emitted", unit="1"
        )

        self.active_alerts = self._meter.create_up_down_counter(
            name="alerts.active", description="Currently active alerts", unit="1"
        )

    def record_raised(self, alert_type: str, severity: str) -> None:
        self.alerts_raised.add(1, attributes={"type": alert_type, "severity": severity})
        self.active_alerts.add(1)

    def record_deduplicated(self, alert_type: str) -> None:
        self.alerts_deduplicated.add(1, attributes={"type": alert_type})

    def record_suppressed(self, alert_type: str) -> None:
        self.alerts_suppressed.add(1, attributes={"type": alert_type})

    def record_escalation(self, alert_type: str, level: int, success: bool) -> None:
        if success:
            self.escalations_fired.add(1, attributes={"type": alert_type, "level": str(level)})
        else:
            self.escalation_failures.add(1, attributes={"type": alert_type, "level": str(level)})

    def record_acknowledged(self, alert_type: str) -> None:
        self.alerts_acknowledged.add(1, attributes={"type": alert_type})

    def record_resolved(self, alert_type: str) -> None:
        self.alerts_resolved.add(1, attributes={"type": alert_type})
        self.active_alerts.add(-1)

    def record_stale(self, alert_type: str) -> None:
        self.stale_alerts.add(1, attributes={"type": alert_type})
