from carenotify.core.metrics.base import BaseMetrics


class DeliveryMetrics(BaseMetrics):
    """Metrics for the delivery pipeline (queue, channel attempts, outcomes)."""

    def _create_instruments(self) -> None:
        self.notifications_created = self._meter.create_counter(
            name="notifications.created.total", description="Total notifications created", unit="1"
        )

        self.delivery_attempts = self._meter.create_counter(
            name="delivery.attempts.total", description="Channel delivery attempts", unit="1"
        )

        self.delivery_outcomes = self._meter.create_counter(
            name="delivery.outcomes.total", description="Delivery outcomes by channel and status", unit="1"
        )

        self.send_latency = self._meter.create_histogram(
            name="delivery.send.latency", description="Channel send latency in milliseconds", unit="ms"
        )

        self.retries_scheduled = self._meter.create_counter(
            name="delivery.retries.total", description="Queue items rescheduled for retry", unit="1"
        )

        self.permanently_failed = self._meter.create_counter(
            name="delivery.permanently_failed.total", description="Recipient/channel pairs that exhausted retries",
            unit="1"
        )

        self.skipped = self._meter.create_counter(
            name="delivery.skipped.total", description="Recipients skipped by preferences", unit="1"
        )

        self.queue_depth = self._meter.create_up_down_counter(
            name="delivery.queue.depth", description="Items waiting in the delivery queue", unit="1"
        )

        self.provider_callbacks = self._meter.create_counter(
            name="delivery.provider.callbacks.total", description="Provider webhook status callbacks", unit="1"
        )

    def record_created(self, notification_type: str, priority: str) -> None:
        self.notifications_created.add(1, attributes={"type": notification_type, "priority": priority})

    def record_attempt(self, channel: str, success: bool, latency_ms: float) -> None:
        self.delivery_attempts.add(1, attributes={"channel": channel})
        self.delivery_outcomes.add(1, attributes={"channel": channel, "status": "success" if success else "failure"})
        self.send_latency.record(latency_ms, attributes={"channel": channel})

    def record_retry(self, attempt: int) -> None:
        self.retries_scheduled.add(1, attributes={"attempt": str(attempt)})

    def record_permanent_failure(self, channel: str) -> None:
        self.permanently_failed.add(1, attributes={"channel": channel})

    def record_skipped(self, reason: str) -> None:
        self.skipped.add(1, attributes={"reason": reason})

    def record_enqueued(self, count: int = 1) -> None:
        self.queue_depth.add(count)

    def record_dequeued(self, count: int = 1) -> None:
        self.queue_depth.add(-count)

    def record_provider_callback(self, channel: str, event: str) -> None:
        self.provider_callbacks.add(1, attributes={"channel": channel, "event": event})
