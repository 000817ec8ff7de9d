from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

OBJECT_FINALIZE_EVENT = "OBJECT_FINALIZE"


class UploadNotification(BaseModel):
    """Object-finalize notification from the ingest bucket (GCS JSON_API_V1 payload)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    object_path: str = Field(alias="name")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    size_bytes: int = Field(alias="size")
    bucket_id: str = Field(alias="bucket")
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def empty_metadata(cls, value):
        return value or {}


class ObjectMetadata(BaseModel):
    """Freshly fetched stored state of an object."""

    size_bytes: int
    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
