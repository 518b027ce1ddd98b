"""Schemas for company standards (brand voice, platform rules, image style)."""

import json
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class StandardType(str, Enum):
    VOICE = "voice"
    PLATFORM = "platform"
    IMAGE = "image"


class VoiceContent(BaseModel):
    tone: Optional[str] = None
    style: Optional[str] = None
    guidelines: list[str] = Field(default_factory=list)


class PlatformContent(BaseModel):
    platform: Optional[str] = None
    requirements: list[str] = Field(default_factory=list)
    character_limits: dict[str, int | str] = Field(
        default_factory=dict,
        validation_alias="characterLimits",
    )

    model_config = {"populate_by_name": True}


class ImageContent(BaseModel):
    style: Optional[str] = None
    dimensions: Optional[str] = None
    guidelines: list[str] = Field(default_factory=list)


class StandardCreate(BaseModel):
    """Body for creating or updating a standard.

    `content` is either a JSON document matching the type's content model,
    or free text injected verbatim.
    """

    standard_type: StandardType
    name: str = Field(min_length=1)
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _content_to_text(cls, value):
        if isinstance(value, dict):
            return json.dumps(value, ensure_ascii=False)
        return value


class CompanyStandard(BaseModel):
    id: str
    user_id: str
    standard_type: StandardType
    name: str
    content: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class StandardPreview(BaseModel):
    id: str
    standard_type: StandardType
    name: str
    preview: str
