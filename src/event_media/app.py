from fastapi import FastAPI

from event_media.configurations.health_check_config import setup_health_checks
from event_media.lifespan import lifespan

app = FastAPI(lifespan=lifespan)

setup_health_checks(app)
