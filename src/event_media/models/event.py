from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventFields(BaseModel):
    """Shape shared by pending and live event documents.

    Field names follow the documents written by the mobile/admin clients (camelCase),
    the document key is stored as ``_id`` and mirrored in ``id``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    business_id: str = Field(alias="businessId")
    title: str
    caption: Optional[str] = None
    date: str
    link: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    video: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    # Recurring series share one upload, each occurrence is its own document
    recurring_series_id: Optional[str] = Field(default=None, alias="recurringSeriesId")
    recurring_index: Optional[int] = Field(default=None, alias="recurringIndex")
    total_recurring_events: Optional[int] = Field(
        default=None, alias="totalRecurringEvents"
    )

    @classmethod
    def from_document(cls, document: dict):
        data = dict(document)
        key = data.pop("_id", None)
        # The document key is authoritative, a stored "id" field may be stale
        if key is not None:
            data["id"] = str(key)
        return cls.model_validate(data)

    def to_document(self) -> dict:
        document = self.model_dump(by_alias=True)
        document["_id"] = self.id
        return document


class PendingEvent(EventFields):
    """Event awaiting processed media, keyed by its correlation key.

    ``video`` may hold the raw upload URL the client stored; it is never a resolved
    public reference to processed media.
    """


class LiveEvent(EventFields):
    """Publicly visible event. Exactly one of ``image``/``video`` is set."""

    @model_validator(mode="after")
    def check_single_media(self) -> "LiveEvent":
        if bool(self.image) == bool(self.video):
            raise ValueError("Live event must have exactly one of image or video")
        return self

    @classmethod
    def promote(
        cls,
        pending: PendingEvent,
        video_url: str,
        updated_at: str,
        event_id: Optional[str] = None,
    ):
        data = pending.model_dump()
        data.update(video=video_url, image=None, updated_at=updated_at)
        if event_id is not None:
            data["id"] = event_id
        return cls.model_validate(data)
