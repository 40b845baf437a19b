"""Relay API data models."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RelayRequest(BaseModel):
    """Request model for relaying a file to the upload API."""

    model_config = ConfigDict(populate_by_name=True)

    file_url: AnyHttpUrl = Field(
        ..., validation_alias=AliasChoices("fileUrl", "file_url"), description="Source URL of the file"
    )
    mime_type: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("mimeType", "mime_type"),
        description="Content type declared to the upload API",
    )
    display_name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("displayName", "display_name"),
        description="Display name of the uploaded object",
    )
    subject_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("subjectId", "videoId", "subject_id"),
        description="External subject identifier used to correlate progress events",
    )
    upload_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("geminiApiKey", "uploadApiKey", "upload_api_key"),
        description="Upload API key; falls back to UPLOAD_API_KEY",
    )
    progress_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("progressToken", "supabaseAnonKey", "progress_token"),
        description="Bearer token for the progress sink; falls back to PROGRESS_SINK_TOKEN",
    )


class RelayResponse(BaseModel):
    """Terminal outcome of a relay call, serialized in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    file_uri: Optional[str] = None
    upload_id: Optional[str] = None
    total_size: Optional[int] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TransferStatusResponse(BaseModel):
    """Last recorded state of a transfer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    upload_id: str
    subject_id: str
    display_name: str
    state: str
    bytes_uploaded: int = 0
    total_bytes: int = 0
    percentage: int = 0
    file_uri: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime
