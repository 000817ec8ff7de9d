import logging

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from event_media.common.exceptions import EventStoreError, PendingEventNotFoundError
from event_media.models.event import LiveEvent, PendingEvent
from event_media.persistence.mongo import BaseMongo

logger = logging.getLogger(__name__)


class EventStore:
    """Pending and live event collections, both keyed by the correlation key.

    Documents are validated here, on the way in and out, so the pipeline only ever
    handles typed events.
    """

    def __init__(self, pending_events: BaseMongo, live_events: BaseMongo):
        self.pending_events = pending_events
        self.live_events = live_events

    async def get_pending(self, correlation_key: str) -> PendingEvent:
        """
        Point read of the pending event stored under ``correlation_key``.

        Raises:
            PendingEventNotFoundError: If no document exists under the key
            EventStoreError: If the read fails or the document is not a valid event
        """
        try:
            document = await self.pending_events.find_one_by_id(correlation_key)
        except PyMongoError as e:
            raise EventStoreError(
                f"Failed to read pending event {correlation_key}: {e}"
            ) from e

        if document is None:
            raise PendingEventNotFoundError(correlation_key)

        try:
            return PendingEvent.from_document(document)
        except ValidationError as e:
            raise EventStoreError(
                f"Pending event {correlation_key} is not a valid event: {e}"
            ) from e

    async def write_live(self, event: LiveEvent) -> None:
        """Upsert the live event under its id. Same key and content make a repeat a no-op."""
        try:
            result = await self.live_events.replace_one_by_id(
                event.id, event.to_document()
            )
        except PyMongoError as e:
            raise EventStoreError(f"Failed to write live event {event.id}: {e}") from e

        if not result.acknowledged:
            raise EventStoreError(f"Live event write for {event.id} was not acknowledged")

    async def delete_pending(self, correlation_key: str) -> None:
        try:
            result = await self.pending_events.delete_one_by_id(correlation_key)
        except PyMongoError as e:
            raise EventStoreError(
                f"Failed to delete pending event {correlation_key}: {e}"
            ) from e

        if not result.acknowledged:
            raise EventStoreError(
                f"Pending event delete for {correlation_key} was not acknowledged"
            )
        if result.deleted_count == 0:
            # A concurrent invocation for the same key got there first
            logger.info(
                f"Pending event {correlation_key} was already removed",
                extra={"correlation_key": correlation_key},
            )
