from dataclasses import dataclass

from google.cloud import storage
from pymongo.asynchronous.database import AsyncDatabase

from event_media.configurations.config import settings
from event_media.persistence.mongo import BaseMongo
from event_media.services.event_store_service import EventStore
from event_media.services.google_storage_service import ObjectStore
from event_media.services.transcoder_service import FFmpegTranscoder


@dataclass
class PipelineClients:
    object_store: ObjectStore
    event_store: EventStore
    transcoder: FFmpegTranscoder


def build_pipeline_clients(database: AsyncDatabase) -> PipelineClients:
    """Construct the production clients. Called from the lifespan, never at import time."""
    storage_client = storage.Client(project=settings.gcp_project_id)
    return PipelineClients(
        object_store=ObjectStore(storage_client),
        event_store=EventStore(
            pending_events=BaseMongo(settings.pending_events_collection, database),
            live_events=BaseMongo(settings.events_collection, database),
        ),
        transcoder=FFmpegTranscoder(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
        ),
    )
