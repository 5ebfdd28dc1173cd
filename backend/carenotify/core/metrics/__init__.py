from carenotify.core.metrics.alerts import AlertMetrics
from carenotify.core.metrics.base import BaseMetrics
from carenotify.core.metrics.delivery import DeliveryMetrics

__all__ = [
    "AlertMetrics",
    "BaseMetrics",
    "DeliveryMetrics",
]
