"""Pydantic schemas for transcoding messages and the job lookup API."""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from vidpress.modules.transcoding.models import JobStatus, LogLevel

SOURCE_URL_PATTERN = re.compile(r"^https?://.+")


class VideoProcessRequest(BaseModel):
    """Inbound request to transcode one video.

    ``videoUrl`` and ``senderId`` are accepted as older names of
    ``originalVideoUrl`` and ``uploaderId``.
    """
    server_id: str = Field(default="", validation_alias=AliasChoices("serverId", "server_id"))
    uploader_id: str = Field(
        default="",
        validation_alias=AliasChoices("uploaderId", "senderId", "uploader_id"),
    )
    original_video_url: str = Field(
        ...,
        validation_alias=AliasChoices("originalVideoUrl", "videoUrl", "original_video_url"),
    )
    channel_id: str = Field(default="", validation_alias=AliasChoices("channelId", "channel_id"))
    callback_queue: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("callbackQueue", "callback_queue"),
    )

    @field_validator("server_id", "uploader_id", "channel_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("original_video_url", mode="before")
    @classmethod
    def validate_source_url(cls, v: Any) -> Any:
        if not isinstance(v, str):
            raise ValueError("originalVideoUrl must be a string")
        v = v.strip()
        if not SOURCE_URL_PATTERN.match(v):
            raise ValueError("originalVideoUrl must be an http or https URL")
        return v

    @field_validator("callback_queue", mode="before")
    @classmethod
    def strip_callback_queue(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class VideoProcessResponse(BaseModel):
    """Reply published to the requester's callback queue."""
    video_id: str = Field(default="", alias="videoId")
    success: bool = False
    processed_file_path: str = Field(default="", alias="processedFilePath")
    thumbnail_file_path: str = Field(default="", alias="thumbnailFilePath")
    channel_id: str = Field(default="", alias="channelId")
    server_id: str = Field(default="", alias="serverId")
    uploader_id: str = Field(default="", alias="uploaderId")
    duration: int = 0  # seconds, rounded
    error: str = ""

    class Config:
        populate_by_name = True

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True)


class TranscodeJobResponse(BaseModel):
    """Job record returned by the lookup API."""
    id: str
    server_id: str
    uploader_id: str
    channel_id: str
    source_url: str
    callback_queue: str
    status: JobStatus
    result_url: Optional[str]
    output_duration: Optional[float]
    error_message: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class TranscodeLogResponse(BaseModel):
    """One persisted job log entry."""
    job_id: str
    step: str
    message: str
    level: LogLevel
    duration_ms: Optional[int]
    timestamp: datetime
    details: Optional[dict] = Field(
        default=None,
        validation_alias=AliasChoices("details", "metadata"),
        serialization_alias="metadata",
    )

    class Config:
        from_attributes = True


class TranscodeLogListResponse(BaseModel):
    """Log entries of one job, oldest first."""
    job_id: str
    entries: list[TranscodeLogResponse]
    total: int
