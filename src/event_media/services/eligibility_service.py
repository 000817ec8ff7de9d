from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from pydantic import BaseModel

from event_media.configurations.media_policy import (
    DERIVATIVE_MARKER,
    INGEST_PREFIX,
    MIN_SIZE_TO_COMPRESS,
    VIDEO_EXTENSIONS,
)
from event_media.events.upload_notification import ObjectMetadata, UploadNotification
from event_media.services.idempotency_service import is_self_produced


class EligibilityReason(str, Enum):
    ELIGIBLE = "ELIGIBLE"
    OUTSIDE_INGEST_PREFIX = "OUTSIDE_INGEST_PREFIX"
    UNSUPPORTED_EXTENSION = "UNSUPPORTED_EXTENSION"
    DERIVATIVE_PATH = "DERIVATIVE_PATH"
    SELF_PRODUCED = "SELF_PRODUCED"
    TOO_SMALL = "TOO_SMALL"


class EligibilityDecision(BaseModel):
    proceed: bool
    reason: EligibilityReason


def _skip(reason: EligibilityReason) -> EligibilityDecision:
    return EligibilityDecision(proceed=False, reason=reason)


def evaluate_path(object_path: str) -> Optional[EligibilityDecision]:
    """Rules that need nothing but the path. Returns a skip decision or None."""
    if not object_path or not object_path.startswith(INGEST_PREFIX):
        return _skip(EligibilityReason.OUTSIDE_INGEST_PREFIX)

    if PurePosixPath(object_path).suffix.lower() not in VIDEO_EXTENSIONS:
        return _skip(EligibilityReason.UNSUPPORTED_EXTENSION)

    if DERIVATIVE_MARKER in object_path:
        return _skip(EligibilityReason.DERIVATIVE_PATH)

    return None


def evaluate_eligibility(
    notification: UploadNotification, object_metadata: ObjectMetadata
) -> EligibilityDecision:
    """
    Decide whether an uploaded object needs processing.

    Rules are evaluated in order and the first match wins. ``object_metadata`` must be
    fetched fresh from the store; the notification's own metadata may predate it.
    """
    path_decision = evaluate_path(notification.object_path)
    if path_decision is not None:
        return path_decision

    if is_self_produced(object_metadata.metadata) or is_self_produced(
        notification.metadata
    ):
        return _skip(EligibilityReason.SELF_PRODUCED)

    if object_metadata.size_bytes < MIN_SIZE_TO_COMPRESS:
        return _skip(EligibilityReason.TOO_SMALL)

    return EligibilityDecision(proceed=True, reason=EligibilityReason.ELIGIBLE)
