import logging

from langfuse import Langfuse
from event_media.configurations.config import settings

logger = logging.getLogger(__name__)
langfuse = Langfuse(
    host=settings.langfuse_host,
    public_key=settings.langfuse_public_key,
    secret_key=settings.langfuse_secret_key,
    environment=settings.langfuse_tracing_environment,
    tracing_enabled=bool(settings.langfuse_public_key and settings.langfuse_secret_key),
)
