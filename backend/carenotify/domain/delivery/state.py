from carenotify.domain.enums.notification import DeliveryStatus

# Allowed (from -> to) moves of a recipient/channel pair. DELIVERED -> PERMANENTLY_FAILED
# only happens through a provider bounce/complaint callback; SENDING -> SENDING is a
# re-claim after the queue lease of a crashed worker expired. FAILED -> SKIPPED closes a
# fallback channel once another channel of the same item delivered.
ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({
        DeliveryStatus.SENDING,
        DeliveryStatus.SKIPPED,
        DeliveryStatus.PERMANENTLY_FAILED,
    }),
    DeliveryStatus.SENDING: frozenset({
        DeliveryStatus.SENDING,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
        DeliveryStatus.PERMANENTLY_FAILED,
    }),
    DeliveryStatus.FAILED: frozenset({
        DeliveryStatus.PENDING,
        DeliveryStatus.SENDING,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.PERMANENTLY_FAILED,
        DeliveryStatus.SKIPPED,
    }),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.PERMANENTLY_FAILED}),
    DeliveryStatus.PERMANENTLY_FAILED: frozenset(),
    DeliveryStatus.SKIPPED: frozenset(),
}


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: DeliveryStatus) -> list[DeliveryStatus]:
    """States from which ``target`` may be reached, for conditional updates."""
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]
