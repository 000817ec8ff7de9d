from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from event_media.configurations.media_policy import (
    PIPELINE_ID,
    PRODUCED_BY_METADATA_KEY,
)


def is_self_produced(metadata: Optional[Mapping[str, str]]) -> bool:
    """True when the object carries this pipeline's marker."""
    if not metadata:
        return False
    return metadata.get(PRODUCED_BY_METADATA_KEY) == PIPELINE_ID


def build_derivative_metadata(
    original_path: str,
    original_size: int,
    compressed_size: int,
    compression_date: Optional[datetime] = None,
) -> Dict[str, str]:
    compression_date = compression_date or datetime.now(timezone.utc)
    return {
        "compressed": "true",
        "originalFile": original_path,
        "originalSize": str(original_size),
        "compressedSize": str(compressed_size),
        "compressionDate": compression_date.isoformat(),
        PRODUCED_BY_METADATA_KEY: PIPELINE_ID,
    }
