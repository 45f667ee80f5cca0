"""Message bus clients: Google Cloud Pub/Sub and an in-process bus."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when the underlying bus connection fails."""


@dataclass
class BusMessage:
    """A received message; ``ack`` confirms it was handled."""

    data: bytes
    attributes: dict[str, str] = field(default_factory=dict)
    message_id: str = ""
    _ack: Optional[Callable[[], None]] = field(default=None, repr=False)

    def ack(self) -> None:
        if self._ack is not None:
            self._ack()


class MessageBus(ABC):
    """Publish/consume capability over a topic-based message bus."""

    @abstractmethod
    async def publish(
        self, topic: str, data: bytes, key: Optional[str] = None, timeout: float = 30.0
    ) -> str:
        """Publish one message and wait for the broker's acknowledgement.

        Returns:
            Broker-assigned message id

        Raises:
            TransportError: If the message was not accepted within ``timeout``
        """
        pass

    @abstractmethod
    def consume(self, subscription: str) -> AsyncIterator[BusMessage]:
        """Iterate over messages of a subscription until the transport fails.

        Raises:
            TransportError: When the subscription can no longer deliver
        """
        pass

    async def close(self) -> None:
        return None


class _TransportFailure:
    def __init__(self, error: BaseException | None):
        self.error = error


class InMemoryMessageBus(MessageBus):
    """Process-local bus used for local development and tests.

    Published messages are recorded in ``published``; messages for a
    subscription are injected with ``deliver``.
    """

    def __init__(self):
        self.published: list[tuple[str, Optional[str], bytes]] = []
        self._queues: dict[str, asyncio.Queue] = {}
        self._counter = 0

    def _queue(self, subscription: str) -> asyncio.Queue:
        if subscription not in self._queues:
            self._queues[subscription] = asyncio.Queue()
        return self._queues[subscription]

    async def publish(
        self, topic: str, data: bytes, key: Optional[str] = None, timeout: float = 30.0
    ) -> str:
        self._counter += 1
        self.published.append((topic, key, data))
        return str(self._counter)

    def deliver(self, subscription: str, data: bytes) -> None:
        self._queue(subscription).put_nowait(BusMessage(data=data))

    def fail(self, subscription: str, error: BaseException | None = None) -> None:
        """Simulate the transport dropping the subscription."""
        self._queue(subscription).put_nowait(_TransportFailure(error))

    async def consume(self, subscription: str) -> AsyncIterator[BusMessage]:
        queue = self._queue(subscription)
        while True:
            item = await queue.get()
            if isinstance(item, _TransportFailure):
                raise TransportError(f"Subscription '{subscription}' closed: {item.error}")
            yield item


class PubSubMessageBus(MessageBus):
    """Google Cloud Pub/Sub implementation.

    Publishing waits on the client's publish future off the event loop.
    Streaming pull callbacks run on the client's own threads and hand each
    message to the event loop through an asyncio queue.
    """

    def __init__(self, project_id: str):
        if not project_id:
            raise ValueError("GCP_PROJECT_ID is required for the Pub/Sub event bus")
        self.project_id = project_id
        self._publisher: Optional[Any] = None

    def _get_publisher(self) -> Any:
        """Lazy-load and cache the publisher client."""
        if self._publisher is None:
            from google.cloud import pubsub_v1

            self._publisher = pubsub_v1.PublisherClient()
        return self._publisher

    async def publish(
        self, topic: str, data: bytes, key: Optional[str] = None, timeout: float = 30.0
    ) -> str:
        publisher = self._get_publisher()
        topic_path = publisher.topic_path(self.project_id, topic)
        attributes = {"key": key} if key else {}
        try:
            future = publisher.publish(topic_path, data, **attributes)
            return await asyncio.to_thread(future.result, timeout=timeout)
        except Exception as e:
            raise TransportError(f"Failed to publish to '{topic}': {e}") from e

    async def consume(self, subscription: str) -> AsyncIterator[BusMessage]:
        from google.cloud import pubsub_v1

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        subscriber = pubsub_v1.SubscriberClient()
        subscription_path = subscriber.subscription_path(self.project_id, subscription)

        def callback(message: Any) -> None:
            item = BusMessage(
                data=message.data,
                attributes=dict(message.attributes),
                message_id=message.message_id,
                _ack=message.ack,
            )
            loop.call_soon_threadsafe(queue.put_nowait, item)

        streaming_pull_future = subscriber.subscribe(
            subscription_path,
            callback=callback,
            flow_control=pubsub_v1.types.FlowControl(max_messages=10),
        )

        def on_done(future: Any) -> None:
            error = None if future.cancelled() else future.exception()
            loop.call_soon_threadsafe(queue.put_nowait, _TransportFailure(error))

        streaming_pull_future.add_done_callback(on_done)
        logger.info("Pub/Sub subscription started", extra={"subscription": subscription_path})

        try:
            while True:
                item = await queue.get()
                if isinstance(item, _TransportFailure):
                    raise TransportError(
                        f"Pub/Sub streaming pull for '{subscription}' ended: {item.error}"
                    )
                yield item
        finally:
            streaming_pull_future.cancel()
            subscriber.close()

    async def close(self) -> None:
        if self._publisher is not None:
            await asyncio.to_thread(self._publisher.stop)
            self._publisher = None
