import asyncio
import logging
from typing import Awaitable, Callable, Optional

from google.api_core.exceptions import AlreadyExists, NotFound
from google.cloud.pubsub_v1 import SubscriberClient
from google.cloud.pubsub_v1.subscriber.message import Message
from google.cloud.pubsub_v1.types import FlowControl
from google.pubsub_v1 import PublisherAsyncClient

from event_media.configurations.media_policy import (
    INVOCATION_TIMEOUT_SECONDS,
    MAX_CONCURRENT_INVOCATIONS,
)

AsyncCallable = Callable[[Message], Awaitable[object]]

logger = logging.getLogger(__name__)

# Leases must outlive the slowest invocation or pub/sub redelivers mid-flight
MAX_LEASE_DURATION_SECONDS = INVOCATION_TIMEOUT_SECONDS + 60


class PubSubManager:
    """Singleton manager for Pub/Sub clients to ensure proper connection reuse."""

    _instance = None
    _publisher_client: Optional[PublisherAsyncClient] = None
    _sync_subscriber: Optional[SubscriberClient] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def get_publisher(self) -> PublisherAsyncClient:
        """Get or create a singleton publisher client, used for topic management."""
        if self._publisher_client is None:
            self._publisher_client = PublisherAsyncClient()
            logger.info("Created new PublisherAsyncClient")
        return self._publisher_client

    def get_sync_subscriber(self) -> SubscriberClient:
        """Get or create a singleton sync subscriber client."""
        if self._sync_subscriber is None:
            self._sync_subscriber = SubscriberClient()
            logger.info("Created new sync SubscriberClient")
        return self._sync_subscriber

    async def close_all(self):
        """Close all clients gracefully."""
        if self._publisher_client:
            await self._publisher_client.transport.close()
            self._publisher_client = None
            logger.info("Closed PublisherAsyncClient")

        if self._sync_subscriber:
            self._sync_subscriber.close()
            self._sync_subscriber = None
            logger.info("Closed SubscriberClient")


# Global instance
_manager = PubSubManager()


class MessageWrapper:
    """Exposes a streaming-pull Message through the ReceivedMessage interface."""

    def __init__(self, msg: Message):
        self._msg = msg
        self.ack_id = msg.ack_id
        self.message = self

    @property
    def data(self):
        return self._msg.data

    @property
    def message_id(self):
        return self._msg.message_id

    @property
    def attributes(self):
        return self._msg.attributes

    @property
    def publish_time(self):
        return self._msg.publish_time

    @property
    def delivery_attempt(self):
        return self._msg.delivery_attempt


def build_flow_control(max_messages: int = MAX_CONCURRENT_INVOCATIONS) -> FlowControl:
    return FlowControl(
        max_messages=max_messages,
        max_bytes=10 * 1024 * 1024,
        max_lease_duration=MAX_LEASE_DURATION_SECONDS,
    )


async def initialize_subscriber(
    project_id: str,
    topic_id: str,
    subscription_id: str,
    callback: AsyncCallable,
) -> asyncio.Task:
    """
    Initialize a subscriber with flow control bounded to the invocation limit.

    Returns the asyncio Task running the subscriber.
    """
    subscriber = _manager.get_sync_subscriber()
    subscription_path = subscriber.subscription_path(project_id, subscription_id)

    # Ensure topic and subscription exist before subscribing
    publisher = await _manager.get_publisher()
    topic_path = publisher.topic_path(project_id, topic_id)
    await ensure_topic_exists(publisher, topic_path)
    await ensure_subscription_exists(subscriber, subscription_path, topic_path)

    task = asyncio.create_task(
        subscribe_with_flow_control(subscriber, subscription_path, callback),
        name=f"subscriber_{subscription_id}",
    )

    return task


async def subscribe_with_flow_control(
    subscriber: SubscriberClient,
    subscription_path: str,
    callback: AsyncCallable,
):
    """
    Subscribe to messages using the high-level streaming pull with flow control.
    """
    logger.info(f"Starting subscriber for {subscription_path}")

    async def process_message(message: Message):
        """Process a single message and handle acknowledgment."""
        delivery_attempt = message.delivery_attempt

        try:
            await callback(MessageWrapper(message))

            message.ack()
            logger.debug(
                f"Successfully processed and acked message {message.message_id}, delivery attempt: {delivery_attempt}"
            )

        except Exception as e:
            logger.error(
                f"Error processing message {message.message_id} (attempt {delivery_attempt}): {e}",
                exc_info=True,
            )

            message.nack()
            logger.warning(
                f"Nacked message {message.message_id} for retry, delivery attempt: {delivery_attempt}"
            )

    # Get the main event loop to schedule tasks on
    loop = asyncio.get_running_loop()

    def callback_wrapper(message: Message):
        """Wrapper to handle sync/async bridge."""
        # Schedule the coroutine on the main event loop from this thread
        asyncio.run_coroutine_threadsafe(process_message(message), loop)

    streaming_pull_future = subscriber.subscribe(
        subscription_path,
        callback=callback_wrapper,
        flow_control=build_flow_control(),
        await_callbacks_on_shutdown=True,
    )

    logger.info(f"Streaming pull started for {subscription_path}")

    try:
        await loop.run_in_executor(None, streaming_pull_future.result)
    except asyncio.CancelledError:
        streaming_pull_future.cancel()
        raise
    except Exception as e:
        logger.error(
            f"Streaming pull error for {subscription_path}: {e}", exc_info=True
        )
        streaming_pull_future.cancel()
        raise


async def ensure_topic_exists(publisher: PublisherAsyncClient, topic_path: str):
    """Ensure a topic exists, creating it if necessary."""
    try:
        await publisher.get_topic(topic=topic_path)
        logger.debug(f"Topic {topic_path} already exists.")
    except NotFound:
        # The bucket notification config must still be pointed at a new topic
        logger.warning(f"Topic {topic_path} does not exist. Creating it.")
        try:
            await publisher.create_topic(name=topic_path)
            logger.info(f"Topic {topic_path} created.")
        except AlreadyExists:
            logger.debug(f"Topic {topic_path} already exists (race condition).")
        except Exception as e:
            logger.error(f"Error creating topic {topic_path}: {e}", exc_info=True)
            raise


async def ensure_subscription_exists(
    subscriber: SubscriberClient, subscription_path: str, topic_path: str
):
    """Ensure a subscription exists, creating it if necessary."""
    try:
        subscriber.get_subscription(subscription=subscription_path)
        logger.debug(f"Subscription {subscription_path} already exists.")
    except NotFound:
        logger.info(f"Subscription {subscription_path} does not exist. Creating it.")
        try:
            subscriber.create_subscription(
                request={
                    "name": subscription_path,
                    "topic": topic_path,
                    "ack_deadline_seconds": 600,
                    "enable_exactly_once_delivery": False,
                    "retry_policy": {
                        "minimum_backoff": {"seconds": 10},
                        "maximum_backoff": {"seconds": 600},
                    },
                }
            )
            logger.info(f"Subscription {subscription_path} created.")
        except AlreadyExists:
            logger.debug(
                f"Subscription {subscription_path} already exists (race condition)."
            )
        except Exception as e:
            logger.error(
                f"Error creating subscription {subscription_path}: {e}", exc_info=True
            )
            raise


async def close_subscriber(task: asyncio.Task) -> None:
    """Close a subscriber task gracefully."""
    if task and not task.done():
        logger.info(f"Cancelling subscriber task {task.get_name()}")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info(f"Subscriber task {task.get_name()} cancelled successfully")

    # Close all clients
    await _manager.close_all()
