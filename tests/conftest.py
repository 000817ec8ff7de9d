import os

os.environ["ENV"] = "test"
os.environ.setdefault("GCP_PROJECT_ID", "test-project")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "event-media-test")
os.environ.setdefault("STORAGE_BUCKET_NAME", "test-bucket")
os.environ.setdefault("PUB_SUB_UPLOAD_TOPIC_ID", "event-uploads")
os.environ.setdefault("PUB_SUB_UPLOAD_SUBSCRIPTION_ID", "event-uploads-sub")

from types import SimpleNamespace  # noqa: E402
from typing import Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from pymongo.errors import PyMongoError  # noqa: E402

from event_media.common.exceptions import (  # noqa: E402
    EncodeFailedError,
    ObjectStoreError,
)
from event_media.events.upload_notification import (  # noqa: E402
    ObjectMetadata,
    UploadNotification,
)
from event_media.services.event_store_service import EventStore  # noqa: E402
from event_media.services.google_storage_service import build_public_url  # noqa: E402
from event_media.services.pipeline_clients import PipelineClients  # noqa: E402

BUCKET = "test-bucket"


class FakeCollection:
    """In-memory stand-in for BaseMongo, keyed by ``_id``."""

    def __init__(self, name: str):
        self.name = name
        self.documents: Dict[str, dict] = {}
        self.fail_on: set = set()
        self.calls: List[str] = []

    def _maybe_fail(self, operation: str):
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PyMongoError(f"{self.name}.{operation} failed")

    async def find_one_by_id(self, obj_id: str, session=None):
        self._maybe_fail("find")
        document = self.documents.get(obj_id)
        return dict(document) if document is not None else None

    async def replace_one_by_id(self, obj_id: str, document: dict, session=None):
        self._maybe_fail("replace")
        self.documents[obj_id] = dict(document)
        return SimpleNamespace(acknowledged=True, modified_count=1)

    async def delete_one_by_id(self, obj_id: str, session=None):
        self._maybe_fail("delete")
        removed = self.documents.pop(obj_id, None)
        return SimpleNamespace(
            acknowledged=True, deleted_count=0 if removed is None else 1
        )


class FakeObjectStore:
    def __init__(self):
        self.objects: Dict[str, ObjectMetadata] = {}
        self.uploads: Dict[str, Dict[str, str]] = {}
        self.deleted: List[str] = []
        self.fail_on: set = set()
        self.calls: List[str] = []

    def add(self, path: str, size_bytes: int, metadata: Optional[dict] = None):
        self.objects[path] = ObjectMetadata(
            size_bytes=size_bytes, content_type="video/mp4", metadata=metadata or {}
        )

    def _maybe_fail(self, operation: str):
        self.calls.append(operation)
        if operation in self.fail_on:
            raise ObjectStoreError(f"{operation} failed")

    async def get_metadata(self, bucket_id: str, object_path: str):
        self._maybe_fail("get_metadata")
        return self.objects.get(object_path)

    async def download(self, bucket_id: str, object_path: str, destination: str):
        self._maybe_fail("download")
        with open(destination, "wb") as f:
            f.write(b"original")

    async def upload_derivative(
        self, bucket_id: str, source_file_name: str, destination_path: str, metadata
    ) -> str:
        self._maybe_fail("upload_derivative")
        assert os.path.exists(source_file_name)
        self.uploads[destination_path] = dict(metadata)
        self.objects[destination_path] = ObjectMetadata(
            size_bytes=os.path.getsize(source_file_name),
            content_type="video/mp4",
            metadata=dict(metadata),
        )
        return build_public_url(bucket_id, destination_path)

    async def delete(self, bucket_id: str, object_path: str):
        self._maybe_fail("delete")
        self.objects.pop(object_path, None)
        self.deleted.append(object_path)

    async def bucket_exists(self, bucket_id: str) -> bool:
        return bucket_id == BUCKET


class FakeTranscoder:
    """Writes a small output file and reports ``output_size`` as its size."""

    def __init__(self, output_size: int = 0, error: Optional[Exception] = None):
        self.output_size = output_size
        self.error = error
        self.calls: List[tuple] = []

    async def transcode(self, input_path: str, output_path: str, on_progress=None):
        self.calls.append((input_path, output_path))
        if self.error is not None:
            raise self.error
        with open(output_path, "wb") as f:
            f.write(b"compressed")
        if on_progress:
            on_progress(100)
        return self.output_size


def make_pending_document(key: str, **overrides) -> dict:
    document = {
        "_id": key,
        "businessId": "biz42",
        "title": "Friday tasting",
        "caption": "Natural wines from Kakheti",
        "date": "2024-11-15T19:00:00Z",
        "tags": ["wine"],
        "video": f"https://storage.example.com/events/{key}.mp4",
        "createdAt": "2024-11-14T10:00:00Z",
    }
    document.update(overrides)
    return document


def make_notification(path: str, size_bytes: int, metadata=None) -> UploadNotification:
    return UploadNotification.model_validate(
        {
            "name": path,
            "bucket": BUCKET,
            "size": str(size_bytes),
            "contentType": "video/mp4",
            "metadata": metadata,
        }
    )


@pytest.fixture
def pending_collection():
    return FakeCollection("pending-events")


@pytest.fixture
def live_collection():
    return FakeCollection("events")


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def event_store(pending_collection, live_collection):
    return EventStore(pending_events=pending_collection, live_events=live_collection)


@pytest.fixture
def clients(object_store, event_store, transcoder):
    return PipelineClients(
        object_store=object_store, event_store=event_store, transcoder=transcoder
    )


@pytest.fixture
def encode_failure():
    return EncodeFailedError("FFmpeg exited with code 1: moov atom not found", 1)
