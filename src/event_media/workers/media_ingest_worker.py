import asyncio
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Optional

import structlog
from google.pubsub_v1 import ReceivedMessage
from pydantic import ValidationError

from langfuse import observe
from event_media.common.exceptions import (
    EncodeFailedError,
    EventStoreError,
    MalformedPathError,
    ObjectStoreError,
    PendingEventNotFoundError,
)
from event_media.configurations.media_policy import (
    BENEFICIAL_RATIO,
    INVOCATION_TIMEOUT_SECONDS,
    MAX_CONCURRENT_INVOCATIONS,
)
from event_media.events.upload_notification import (
    OBJECT_FINALIZE_EVENT,
    UploadNotification,
)
from event_media.services.correlation_service import (
    build_derivative_path,
    extract_correlation_key,
)
from event_media.services.eligibility_service import (
    evaluate_eligibility,
    evaluate_path,
)
from event_media.services.external_clients.langfuse_client import langfuse
from event_media.services.pipeline_clients import PipelineClients
from event_media.services.state_transition_service import (
    PromotionRequest,
    StateTransitionCoordinator,
    TransitionState,
    TransitionStep,
    TransitionTrace,
    advance,
)

logger = logging.getLogger(__name__)


class PipelineStatus(str, Enum):
    SKIPPED = "SKIPPED"
    CORRELATION_FAILED = "CORRELATION_FAILED"
    PENDING_NOT_FOUND = "PENDING_NOT_FOUND"
    ENCODE_FAILED = "ENCODE_FAILED"
    NOT_BENEFICIAL = "NOT_BENEFICIAL"
    DERIVATIVE_UPLOAD_FAILED = "DERIVATIVE_UPLOAD_FAILED"
    LIVE_WRITE_FAILED = "LIVE_WRITE_FAILED"
    PROMOTION_HALTED = "PROMOTION_HALTED"
    PROMOTED = "PROMOTED"
    TIMED_OUT = "TIMED_OUT"
    INVALID_MESSAGE = "INVALID_MESSAGE"


@dataclass
class PipelineOutcome:
    status: PipelineStatus
    reason: Optional[str] = None
    correlation_key: Optional[str] = None
    state: Optional[TransitionState] = None
    trace: TransitionTrace = field(default_factory=TransitionTrace)


def is_compression_beneficial(original_size: int, compressed_size: int) -> bool:
    return compressed_size <= BENEFICIAL_RATIO * original_size


class MediaIngestPipeline:
    """Handles one uploaded object, from eligibility to the pending -> live promotion.

    All steps of an invocation run sequentially; concurrency exists only across
    invocations, bounded by the subscriber callback.
    """

    def __init__(self, clients: PipelineClients):
        self.clients = clients
        self.coordinator = StateTransitionCoordinator(
            clients.object_store, clients.event_store
        )

    async def run(self, notification: UploadNotification) -> PipelineOutcome:
        object_path = notification.object_path
        logger.info(
            "Processing uploaded file",
            extra={
                "object_path": object_path,
                "content_type": notification.content_type,
                "size_bytes": notification.size_bytes,
            },
        )

        # Path-only rules first, most notifications never need a metadata fetch
        path_decision = evaluate_path(object_path)
        if path_decision is not None:
            logger.info(
                f"Skipping {object_path}: {path_decision.reason.value}",
                extra={"object_path": object_path},
            )
            return PipelineOutcome(
                PipelineStatus.SKIPPED, reason=path_decision.reason.value
            )

        object_metadata = await self.clients.object_store.get_metadata(
            notification.bucket_id, object_path
        )
        if object_metadata is None:
            logger.info(
                f"Skipping {object_path}: object no longer exists",
                extra={"object_path": object_path},
            )
            return PipelineOutcome(PipelineStatus.SKIPPED, reason="OBJECT_MISSING")

        decision = evaluate_eligibility(notification, object_metadata)
        if not decision.proceed:
            logger.info(
                f"Skipping {object_path}: {decision.reason.value}",
                extra={
                    "object_path": object_path,
                    "size_bytes": object_metadata.size_bytes,
                },
            )
            return PipelineOutcome(PipelineStatus.SKIPPED, reason=decision.reason.value)

        try:
            correlation_key = extract_correlation_key(object_path)
        except MalformedPathError as e:
            logger.error(str(e), extra={"object_path": object_path})
            return PipelineOutcome(PipelineStatus.CORRELATION_FAILED, reason=str(e))

        try:
            pending_event = await self.clients.event_store.get_pending(correlation_key)
        except PendingEventNotFoundError as e:
            logger.error(
                f"No pending event found for uploaded video: {e}",
                extra={"object_path": object_path, "correlation_key": correlation_key},
            )
            return PipelineOutcome(
                PipelineStatus.PENDING_NOT_FOUND,
                reason=str(e),
                correlation_key=correlation_key,
            )
        except EventStoreError as e:
            # Nothing written yet, the message is nacked and redelivered
            logger.error(
                f"Pending event lookup failed: {e}",
                extra={"object_path": object_path, "correlation_key": correlation_key},
            )
            raise

        original_size = object_metadata.size_bytes
        logger.info(
            "Starting video compression",
            extra={
                "object_path": object_path,
                "correlation_key": correlation_key,
                "original_size": original_size,
                "size_mb": f"{original_size / 1024 / 1024:.2f}MB",
            },
        )

        trace = TransitionTrace()
        suffix = PurePosixPath(object_path).suffix.lower()
        with tempfile.TemporaryDirectory(prefix="event-media-") as tmpdir:
            input_path = os.path.join(tmpdir, f"input{suffix}")
            output_path = os.path.join(tmpdir, "output.mp4")

            try:
                await self.clients.object_store.download(
                    notification.bucket_id, object_path, input_path
                )
            except ObjectStoreError as e:
                logger.error(
                    f"Download failed, leaving the message for redelivery: {e}",
                    extra={"object_path": object_path},
                )
                raise

            state = TransitionState.DOWNLOADED
            try:
                compressed_size = await self.clients.transcoder.transcode(
                    input_path, output_path
                )
            except EncodeFailedError as e:
                state = advance(state, False)
                trace.record(TransitionStep.ENCODE, False, state)
                logger.error(
                    f"Video compression failed, original and pending event left for retry: {e}",
                    extra={"object_path": object_path, "correlation_key": correlation_key},
                )
                return PipelineOutcome(
                    PipelineStatus.ENCODE_FAILED,
                    reason=str(e),
                    correlation_key=correlation_key,
                    state=state,
                    trace=trace,
                )

            state = advance(state, True)
            trace.record(TransitionStep.ENCODE, True, state)
            reduction = (original_size - compressed_size) / original_size * 100
            logger.info(
                "Compression complete",
                extra={
                    "original_size": original_size,
                    "compressed_size": compressed_size,
                    "reduction": f"{reduction:.1f}%",
                },
            )

            if not is_compression_beneficial(original_size, compressed_size):
                # The pending event stays until someone decides how to publish
                # media that does not compress
                logger.warning(
                    f"Compression not beneficial, keeping original and pending event "
                    f"{correlation_key} untouched",
                    extra={
                        "object_path": object_path,
                        "correlation_key": correlation_key,
                        "original_size": original_size,
                        "compressed_size": compressed_size,
                    },
                )
                return PipelineOutcome(
                    PipelineStatus.NOT_BENEFICIAL,
                    correlation_key=correlation_key,
                    state=state,
                    trace=trace,
                )

            result = await self.coordinator.promote(
                PromotionRequest(
                    notification=notification,
                    correlation_key=correlation_key,
                    pending_event=pending_event,
                    derivative_path=build_derivative_path(object_path),
                    local_output_path=output_path,
                    original_size=original_size,
                    compressed_size=compressed_size,
                ),
                trace,
            )

        return PipelineOutcome(
            _status_for(result.state, result.trace),
            correlation_key=correlation_key,
            state=result.state,
            trace=result.trace,
        )


def _status_for(state: TransitionState, trace: TransitionTrace) -> PipelineStatus:
    if state in (TransitionState.PENDING_DELETED, TransitionState.ORIGINAL_DELETED):
        return PipelineStatus.PROMOTED
    if state == TransitionState.HALTED:
        return PipelineStatus.PROMOTION_HALTED
    if trace.succeeded(TransitionStep.UPLOAD_DERIVATIVE):
        return PipelineStatus.LIVE_WRITE_FAILED
    return PipelineStatus.DERIVATIVE_UPLOAD_FAILED


def parse_upload_message(message: ReceivedMessage) -> Optional[UploadNotification]:
    """
    Notification carried by a GCS pub/sub message.

    Returns None for other event types (deletes, metadata updates).

    Raises:
        ValueError: If the payload is not a valid object resource
    """
    attributes = message.message.attributes or {}
    event_type = attributes.get("eventType", OBJECT_FINALIZE_EVENT)
    if event_type != OBJECT_FINALIZE_EVENT:
        return None

    try:
        payload = json.loads(message.message.data.decode("utf-8"))
        return UploadNotification.model_validate(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Invalid upload notification payload: {e}") from e


def create_upload_callback(
    pipeline: MediaIngestPipeline,
    timeout: float = INVOCATION_TIMEOUT_SECONDS,
    max_concurrency: int = MAX_CONCURRENT_INVOCATIONS,
) -> Callable[[ReceivedMessage], Awaitable[PipelineOutcome]]:
    semaphore = asyncio.Semaphore(max_concurrency)

    @observe(name="process_upload_callback")
    async def process_upload_callback(message: ReceivedMessage) -> PipelineOutcome:
        """
        Process one object-finalize notification from the ingest bucket.

        Every classified outcome returns normally so the message is acked. Store
        errors before the first write, and unexpected errors, propagate and get the
        message redelivered.
        """
        message_id = message.message.message_id
        try:
            notification = parse_upload_message(message)
        except ValueError as e:
            logger.error(f"Dropping message {message_id}: {e}")
            return PipelineOutcome(PipelineStatus.INVALID_MESSAGE, reason=str(e))

        if notification is None:
            return PipelineOutcome(PipelineStatus.SKIPPED, reason="NOT_FINALIZE_EVENT")

        langfuse.update_current_trace(
            input={
                "message_id": message_id,
                "delivery_attempt": message.delivery_attempt,
                "object_path": notification.object_path,
                "bucket_id": notification.bucket_id,
            },
            metadata={"worker_type": "media_ingest"},
        )

        async with semaphore:
            start_time = time.time()
            with structlog.contextvars.bound_contextvars(
                object_path=notification.object_path, message_id=message_id
            ):
                try:
                    outcome = await asyncio.wait_for(
                        pipeline.run(notification), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    duration_ms = (time.time() - start_time) * 1000
                    logger.warning(
                        f"Video processing timed out after {timeout} seconds "
                        f"(duration: {duration_ms}ms)"
                    )
                    outcome = PipelineOutcome(
                        PipelineStatus.TIMED_OUT,
                        reason=f"Exceeded {timeout} seconds",
                    )

                duration_ms = (time.time() - start_time) * 1000
                logger.info(
                    f"Upload processing finished with {outcome.status.value} "
                    f"in {duration_ms:.0f}ms"
                )

        langfuse.update_current_trace(
            output={
                "status": outcome.status.value,
                "reason": outcome.reason,
                "correlation_key": outcome.correlation_key,
                "steps": [
                    {"step": entry.step.value, "succeeded": entry.succeeded}
                    for entry in outcome.trace.entries
                ],
            },
            metadata={"duration_ms": duration_ms},
        )
        return outcome

    return process_upload_callback
