import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import quote

from google.api_core.exceptions import (
    DeadlineExceeded,
    GoogleAPICallError,
    InternalServerError,
    NotFound,
    ServiceUnavailable,
    TooManyRequests,
)
from google.cloud import storage
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from event_media.common.exceptions import ObjectStoreError
from event_media.configurations.media_policy import DERIVATIVE_CONTENT_TYPE
from event_media.events.upload_notification import ObjectMetadata

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    ServiceUnavailable,
    InternalServerError,
    TooManyRequests,
    DeadlineExceeded,
)


@retry(
    wait=wait_random_exponential(multiplier=1, max=8),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
    stop=stop_after_attempt(4),
)
async def _run_blocking(func, *args, **kwargs):
    # google-cloud-storage is sync only
    return await asyncio.to_thread(func, *args, **kwargs)


def build_public_url(bucket_id: str, object_path: str) -> str:
    """Download URL in the form the mobile clients already resolve."""
    return (
        f"https://firebasestorage.googleapis.com/v0/b/{bucket_id}"
        f"/o/{quote(object_path, safe='')}?alt=media"
    )


def build_gcs_uri(object_path: str, bucket_id: str) -> str:
    return f"gs://{bucket_id}/{object_path}"


class ObjectStore:
    def __init__(self, client: storage.Client):
        self.client = client

    async def get_metadata(
        self, bucket_id: str, object_path: str
    ) -> Optional[ObjectMetadata]:
        """Fresh metadata of an object, or None when the object no longer exists."""
        blob = self.client.bucket(bucket_id).blob(object_path)
        try:
            await _run_blocking(blob.reload)
        except NotFound:
            return None
        except GoogleAPICallError as e:
            raise ObjectStoreError(
                f"Failed to read metadata of {build_gcs_uri(object_path, bucket_id)}: {e}"
            ) from e

        return ObjectMetadata(
            size_bytes=int(blob.size or 0),
            content_type=blob.content_type,
            metadata=blob.metadata or {},
        )

    async def download(
        self, bucket_id: str, object_path: str, destination: str
    ) -> None:
        blob = self.client.bucket(bucket_id).blob(object_path)
        try:
            await _run_blocking(blob.download_to_filename, destination)
        except (GoogleAPICallError, OSError) as e:
            raise ObjectStoreError(
                f"Failed to download {build_gcs_uri(object_path, bucket_id)}: {e}"
            ) from e

        logger.info(
            f"Downloaded {build_gcs_uri(object_path, bucket_id)} to {destination}"
        )

    async def upload_derivative(
        self,
        bucket_id: str,
        source_file_name: str,
        destination_path: str,
        metadata: Dict[str, str],
    ) -> str:
        """Upload a processed file with its custom metadata. Returns the public URL."""
        blob = self.client.bucket(bucket_id).blob(destination_path)
        blob.metadata = metadata

        def upload_sync():
            blob.upload_from_filename(
                source_file_name, content_type=DERIVATIVE_CONTENT_TYPE
            )

        try:
            await _run_blocking(upload_sync)
        except (GoogleAPICallError, OSError) as e:
            raise ObjectStoreError(
                f"Failed to upload {source_file_name} to "
                f"{build_gcs_uri(destination_path, bucket_id)}: {e}"
            ) from e

        gcs_uri = build_gcs_uri(destination_path, bucket_id)
        logger.info(f"File {source_file_name} uploaded to {gcs_uri}.")
        return build_public_url(bucket_id, destination_path)

    async def delete(self, bucket_id: str, object_path: str) -> None:
        """Delete an object. An object that is already gone counts as deleted."""
        blob = self.client.bucket(bucket_id).blob(object_path)
        try:
            await _run_blocking(blob.delete)
        except NotFound:
            logger.info(
                f"{build_gcs_uri(object_path, bucket_id)} was already deleted"
            )
        except GoogleAPICallError as e:
            raise ObjectStoreError(
                f"Failed to delete {build_gcs_uri(object_path, bucket_id)}: {e}"
            ) from e

    async def bucket_exists(self, bucket_id: str) -> bool:
        bucket = self.client.bucket(bucket_id)
        return await _run_blocking(bucket.exists)
