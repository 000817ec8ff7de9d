class MediaIngestError(Exception):
    """Base class for failures the ingest pipeline classifies and logs."""


class MalformedPathError(MediaIngestError):
    def __init__(self, object_path: str):
        super().__init__(f"Object path yields no correlation key: {object_path!r}")
        self.object_path = object_path


class PendingEventNotFoundError(MediaIngestError):
    def __init__(self, correlation_key: str):
        super().__init__(f"No pending event for key {correlation_key!r}")
        self.correlation_key = correlation_key


class EncodeFailedError(MediaIngestError):
    def __init__(self, message: str, return_code: int | None = None):
        super().__init__(message)
        self.return_code = return_code


class ObjectStoreError(MediaIngestError):
    pass


class EventStoreError(MediaIngestError):
    pass
