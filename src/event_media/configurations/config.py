import os
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import (
    BaseSettings,
    GoogleSecretManagerSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

env_name = os.getenv("ENV", "dev")
load_dotenv("config/.env", override=True)
load_dotenv(f"config/.env.{env_name}", override=True)


class Settings(BaseSettings):
    env: str = env_name
    gcp_project_id: str
    mongodb_uri: str
    mongodb_db_name: str
    storage_bucket_name: str
    pub_sub_upload_topic_id: str
    pub_sub_upload_subscription_id: str
    pending_events_collection: str = "pending-events"
    events_collection: str = "events"
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    k_revision: str = "1.0.0"

    langfuse_host: Optional[str] = None
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_tracing_environment: Optional[str] = None

    model_config = SettingsConfigDict(
        extra="allow",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Secret Manager needs ambient GCP credentials, tests run without them
        if env_name == "test":
            return (
                init_settings,
                env_settings,
                dotenv_settings,
                file_secret_settings,
            )

        project_id = os.getenv("GCP_PROJECT_ID")
        gcp_settings = GoogleSecretManagerSettingsSource(
            settings_cls,
            project_id=project_id,
        )
        # Priority order: init -> env -> dotenv -> gcp_secrets -> file_secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            gcp_settings,
            file_secret_settings,
        )


settings = Settings()


os.environ["LANGFUSE_RELEASE"] = settings.k_revision
