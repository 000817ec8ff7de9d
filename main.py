from event_media.configurations.logging_config import setup_logging

setup_logging()

from event_media.app import app  # noqa: E402

__all__ = ["app"]
