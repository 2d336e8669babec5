"""Verification request schema.

A request is created once by the caller and never mutated afterwards; the
router works on a reclassified copy when the content kind changes.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class ContentKind(str, Enum):
    """Content kind tag used to pick the base agent list."""

    NEWS_ARTICLE = "news_article"
    SOCIAL_MEDIA_POST = "social_media_post"
    VIDEO_CONTENT = "video_content"
    IMAGE_WITH_TEXT = "image_with_text"
    ACADEMIC_PAPER = "academic_paper"
    GOVERNMENT_DOCUMENT = "government_document"
    EDUCATIONAL_CONTENT = "educational_content"
    MULTIMEDIA_CONTENT = "multimedia_content"
    UNKNOWN = "unknown"


class Priority(str, Enum):
    """Request priority. Higher priority shortens timeouts and estimates."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ContentMetadata(BaseModel):
    """Free-form metadata accompanying the content."""

    source: Optional[str] = Field(default=None, description="Publisher or origin")
    language: Optional[str] = Field(default=None, description="ISO language code")
    platform: Optional[str] = Field(default=None, description="Social platform name")
    author: Optional[str] = Field(default=None)
    publish_date: Optional[datetime] = Field(default=None)
    url: Optional[str] = Field(default=None)
    media_type: Optional[str] = Field(
        default=None, description="text, image, video, audio or mixed"
    )
    tags: list[str] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "allow"}


class VerificationRequest(BaseModel):
    """Content submitted for verification.

    Attributes:
        id: Request identifier, generated when omitted
        content: Raw content to verify
        content_kind: Kind tag driving agent selection
        metadata: Language, platform, url, tags, ...
        priority: low/medium/high/critical
        created_at: Creation time (UTC)
        user_id: Optional submitting user
        context: Opaque caller context passed through to agents
    """

    id: str = Field(default_factory=lambda: f"req-{uuid.uuid4().hex[:12]}")
    content: str = Field(..., description="Raw content to verify")
    content_kind: ContentKind = Field(default=ContentKind.UNKNOWN)
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)
    priority: Priority = Field(default=Priority.MEDIUM)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: Optional[str] = Field(default=None)
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Reject empty content."""
        if not v or not v.strip():
            raise ValueError("Content to verify cannot be empty")
        return v
