from pathlib import PurePosixPath

from event_media.common.exceptions import MalformedPathError
from event_media.configurations.media_policy import (
    DERIVATIVE_EXTENSION,
    DERIVATIVE_MARKER,
    INGEST_PREFIX,
)


def extract_correlation_key(object_path: str) -> str:
    """
    Derive the key linking an uploaded object to its pending event.

    Upload clients name files ``<prefix>_<ts1>[_<ts2>].<ext>``. The pending event is
    created with only the first timestamp, so the key keeps the first two
    underscore-delimited segments. Legacy names without an underscore use the whole stem.

    Raises:
        MalformedPathError: If the path has no file stem
    """
    stem = PurePosixPath(object_path).stem if object_path else ""
    if not stem:
        raise MalformedPathError(object_path)

    segments = stem.split("_")
    if len(segments) >= 2:
        key = f"{segments[0]}_{segments[1]}"
    else:
        key = stem

    return key


def build_derivative_path(object_path: str) -> str:
    stem = PurePosixPath(object_path).stem
    return f"{INGEST_PREFIX}{stem}{DERIVATIVE_MARKER}{DERIVATIVE_EXTENSION}"
