import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from event_media.configurations.config import settings
from event_media.persistence.mongo import initialize_db
from event_media.persistence.mongo_client import (
    close_mongo_client,
    initialize_mongo_client,
)
from event_media.services.external_clients.langfuse_client import langfuse
from event_media.services.pipeline_clients import build_pipeline_clients
from event_media.services.pub_sub_service import close_subscriber, initialize_subscriber
from event_media.workers.media_ingest_worker import (
    MediaIngestPipeline,
    create_upload_callback,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(local_app: FastAPI):
    database = await initialize_mongo_client()
    await initialize_db(
        database,
        [settings.pending_events_collection, settings.events_collection],
    )

    clients = build_pipeline_clients(database)
    local_app.state.pipeline_clients = clients

    upload_task = await initialize_subscriber(
        settings.gcp_project_id,
        settings.pub_sub_upload_topic_id,
        settings.pub_sub_upload_subscription_id,
        create_upload_callback(MediaIngestPipeline(clients)),
    )

    yield

    # Shutdown code
    logger.info("Shutting down application")

    try:
        await close_subscriber(upload_task)
    except Exception as e:
        logger.error(f"Error closing upload subscriber: {e}")

    langfuse.shutdown()

    # Close MongoDB connection
    await close_mongo_client()

    logger.info("Application shutdown complete")
