"""Container lifecycle event monitoring.

``EventMonitor`` subscribes to the daemon's event stream, enriches each
``start``/``die`` notification with a container snapshot and hands the
resulting ``ContainerEvent`` to the consumer registered on the returned
``EventSubscription``.
"""

from dockerwatch.events.monitor import EventMonitor, parse_notification
from dockerwatch.events.subscription import EventSubscription, SubscriptionState

__all__ = [
    "EventMonitor",
    "EventSubscription",
    "SubscriptionState",
    "parse_notification",
]
