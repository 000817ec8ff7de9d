"""Ordered promotion of a pending event to a live event.

The sequence is a fixed chain of states. Each step runs only after the previous one is
confirmed, so the original upload is deleted only once the live event is written and
the pending event is gone:

    DOWNLOADED -> ENCODED -> DERIVATIVE_UPLOADED -> LIVE_WRITTEN
        -> PENDING_DELETED -> ORIGINAL_DELETED

A failed step ends the chain. Before the live write that means FAILED (nothing was
replaced, nothing was destroyed); after it, HALTED (the live event is correct, cleanup
stopped). A failed original delete leaves the chain at PENDING_DELETED, which is still
a complete promotion.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from event_media.common.exceptions import MediaIngestError
from event_media.events.upload_notification import UploadNotification
from event_media.models.event import LiveEvent, PendingEvent
from event_media.services.event_store_service import EventStore
from event_media.services.google_storage_service import ObjectStore
from event_media.services.idempotency_service import build_derivative_metadata

logger = logging.getLogger(__name__)


class TransitionState(str, Enum):
    DOWNLOADED = "DOWNLOADED"
    ENCODED = "ENCODED"
    DERIVATIVE_UPLOADED = "DERIVATIVE_UPLOADED"
    LIVE_WRITTEN = "LIVE_WRITTEN"
    PENDING_DELETED = "PENDING_DELETED"
    ORIGINAL_DELETED = "ORIGINAL_DELETED"
    FAILED = "FAILED"
    HALTED = "HALTED"


class TransitionStep(str, Enum):
    ENCODE = "ENCODE"
    UPLOAD_DERIVATIVE = "UPLOAD_DERIVATIVE"
    WRITE_LIVE = "WRITE_LIVE"
    DELETE_PENDING = "DELETE_PENDING"
    DELETE_ORIGINAL = "DELETE_ORIGINAL"


_STEP_FROM: Dict[TransitionState, TransitionStep] = {
    TransitionState.DOWNLOADED: TransitionStep.ENCODE,
    TransitionState.ENCODED: TransitionStep.UPLOAD_DERIVATIVE,
    TransitionState.DERIVATIVE_UPLOADED: TransitionStep.WRITE_LIVE,
    TransitionState.LIVE_WRITTEN: TransitionStep.DELETE_PENDING,
    TransitionState.PENDING_DELETED: TransitionStep.DELETE_ORIGINAL,
}

_ON_SUCCESS: Dict[TransitionState, TransitionState] = {
    TransitionState.DOWNLOADED: TransitionState.ENCODED,
    TransitionState.ENCODED: TransitionState.DERIVATIVE_UPLOADED,
    TransitionState.DERIVATIVE_UPLOADED: TransitionState.LIVE_WRITTEN,
    TransitionState.LIVE_WRITTEN: TransitionState.PENDING_DELETED,
    TransitionState.PENDING_DELETED: TransitionState.ORIGINAL_DELETED,
}

_ON_FAILURE: Dict[TransitionState, TransitionState] = {
    TransitionState.DOWNLOADED: TransitionState.FAILED,
    TransitionState.ENCODED: TransitionState.FAILED,
    TransitionState.DERIVATIVE_UPLOADED: TransitionState.FAILED,
    TransitionState.LIVE_WRITTEN: TransitionState.HALTED,
    TransitionState.PENDING_DELETED: TransitionState.PENDING_DELETED,
}


def next_step(state: TransitionState) -> Optional[TransitionStep]:
    return _STEP_FROM.get(state)


def advance(state: TransitionState, succeeded: bool) -> TransitionState:
    """Next state after the step leaving ``state`` succeeded or failed."""
    if state not in _STEP_FROM:
        raise ValueError(f"No step leaves terminal state {state.value}")
    return _ON_SUCCESS[state] if succeeded else _ON_FAILURE[state]


def is_promoted(state: TransitionState) -> bool:
    """Live event written and pending event removed."""
    return state in (TransitionState.PENDING_DELETED, TransitionState.ORIGINAL_DELETED)


@dataclass
class TraceEntry:
    step: TransitionStep
    succeeded: bool
    state: TransitionState


@dataclass
class TransitionTrace:
    entries: List[TraceEntry] = field(default_factory=list)

    def record(
        self, step: TransitionStep, succeeded: bool, state: TransitionState
    ) -> None:
        self.entries.append(TraceEntry(step=step, succeeded=succeeded, state=state))

    def attempted(self, step: TransitionStep) -> bool:
        return any(entry.step == step for entry in self.entries)

    def succeeded(self, step: TransitionStep) -> bool:
        return any(entry.step == step and entry.succeeded for entry in self.entries)

    def steps(self) -> List[TransitionStep]:
        return [entry.step for entry in self.entries]


@dataclass
class PromotionRequest:
    notification: UploadNotification
    correlation_key: str
    pending_event: PendingEvent
    derivative_path: str
    local_output_path: str
    original_size: int
    compressed_size: int


@dataclass
class PromotionResult:
    state: TransitionState
    trace: TransitionTrace
    derivative_url: Optional[str] = None
    live_event: Optional[LiveEvent] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateTransitionCoordinator:
    """Drives the post-encode steps of the chain. Step failures are logged, never raised."""

    def __init__(
        self,
        object_store: ObjectStore,
        event_store: EventStore,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.object_store = object_store
        self.event_store = event_store
        self.clock = clock

    async def promote(
        self, request: PromotionRequest, trace: Optional[TransitionTrace] = None
    ) -> PromotionResult:
        result = PromotionResult(
            state=TransitionState.ENCODED, trace=trace or TransitionTrace()
        )
        handlers = {
            TransitionStep.UPLOAD_DERIVATIVE: self._upload_derivative,
            TransitionStep.WRITE_LIVE: self._write_live,
            TransitionStep.DELETE_PENDING: self._delete_pending,
            TransitionStep.DELETE_ORIGINAL: self._delete_original,
        }

        step = next_step(result.state)
        while step is not None:
            succeeded = await handlers[step](request, result)
            result.state = advance(result.state, succeeded)
            result.trace.record(step, succeeded, result.state)
            if not succeeded:
                break
            step = next_step(result.state)

        return result

    async def _upload_derivative(
        self, request: PromotionRequest, result: PromotionResult
    ) -> bool:
        notification = request.notification
        metadata = build_derivative_metadata(
            original_path=notification.object_path,
            original_size=request.original_size,
            compressed_size=request.compressed_size,
            compression_date=self.clock(),
        )
        try:
            result.derivative_url = await self.object_store.upload_derivative(
                notification.bucket_id,
                request.local_output_path,
                request.derivative_path,
                metadata,
            )
        except MediaIngestError as e:
            logger.error(
                f"Failed to upload compressed video, original left untouched: {e}",
                extra={"object_path": notification.object_path},
            )
            return False

        logger.info(
            "Event video compression successful",
            extra={
                "original_file": notification.object_path,
                "compressed_file": request.derivative_path,
                "original_size": request.original_size,
                "compressed_size": request.compressed_size,
                "saved_bytes": request.original_size - request.compressed_size,
            },
        )
        return True

    async def _write_live(
        self, request: PromotionRequest, result: PromotionResult
    ) -> bool:
        event_id = request.correlation_key
        try:
            live_event = LiveEvent.promote(
                request.pending_event,
                video_url=result.derivative_url,
                updated_at=self.clock().isoformat(),
                event_id=event_id,
            )
            await self.event_store.write_live(live_event)
        except (MediaIngestError, ValidationError) as e:
            logger.error(
                f"Failed to write live event {event_id}, "
                f"keeping pending event and original: {e}",
                extra={"event_id": event_id, "derivative_url": result.derivative_url},
            )
            return False

        result.live_event = live_event
        logger.info(
            f"Live event {event_id} written",
            extra={"event_id": event_id, "derivative_url": result.derivative_url},
        )
        return True

    async def _delete_pending(
        self, request: PromotionRequest, result: PromotionResult
    ) -> bool:
        event_id = request.correlation_key
        try:
            await self.event_store.delete_pending(event_id)
        except MediaIngestError as e:
            logger.error(
                f"Failed to delete pending event {event_id}: {e}",
                extra={"event_id": event_id},
            )
            logger.warning(
                "Not deleting original file because pending event cleanup failed",
                extra={"object_path": request.notification.object_path},
            )
            return False

        logger.info(f"Pending event {event_id} removed", extra={"event_id": event_id})
        return True

    async def _delete_original(
        self, request: PromotionRequest, result: PromotionResult
    ) -> bool:
        notification = request.notification
        try:
            await self.object_store.delete(
                notification.bucket_id, notification.object_path
            )
        except MediaIngestError as e:
            logger.warning(
                f"Failed to delete original file, live event is unaffected: {e}",
                extra={"object_path": notification.object_path},
            )
            return False

        logger.info(
            "Original file deleted, event moved from pending to live",
            extra={
                "object_path": notification.object_path,
                "event_id": request.correlation_key,
            },
        )
        return True
