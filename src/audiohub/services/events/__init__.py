"""
Lifecycle events

Publishes upload lifecycle events to the media topic and consumes podcast
lifecycle events to delete the storage artifacts of removed podcasts.
"""

from audiohub.services.events.bus import (
    BusMessage,
    InMemoryMessageBus,
    MessageBus,
    PubSubMessageBus,
    TransportError,
)
from audiohub.services.events.consumer import DeletionConsumer
from audiohub.services.events.publisher import EventPublisher, PublishOutcome

__all__ = [
    "BusMessage",
    "DeletionConsumer",
    "EventPublisher",
    "InMemoryMessageBus",
    "MessageBus",
    "PubSubMessageBus",
    "PublishOutcome",
    "TransportError",
]
