"""Models for the locally persisted entities."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import DEFAULT_AUDIO_QUALITY, DEFAULT_THEME_MODE, GENERAL_CATEGORY_ID

NoteType = Literal["text", "voice"]
AudioQuality = Literal["low", "medium", "high"]
ThemeMode = Literal["light", "dark", "system"]


class WireModel(BaseModel):
    """Immutable model serialised with camelCase wire names."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready mapping using wire names."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Note(WireModel):
    """A text or voice note."""

    id: str
    label: str
    type: NoteType
    content: str
    audio_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("audioPath", "audioRef", "audio_ref"),
        serialization_alias="audioPath",
    )
    audio_duration_seconds: float | None = Field(
        default=None,
        validation_alias=AliasChoices("audioDuration", "audioDurationSeconds", "audio_duration_seconds"),
        serialization_alias="audioDuration",
    )
    category_id: str = GENERAL_CATEGORY_ID
    created_at: str
    updated_at: str
    is_favorite: bool = False


class Category(WireModel):
    """A user-defined grouping for notes."""

    id: str
    name: str
    color: str
    created_at: str


class Settings(WireModel):
    """Application preferences; every field has a default."""

    default_category_id: str = GENERAL_CATEGORY_ID
    audio_quality: AudioQuality = DEFAULT_AUDIO_QUALITY  # type: ignore[assignment]
    theme_mode: ThemeMode = DEFAULT_THEME_MODE  # type: ignore[assignment]


__all__ = [
    "AudioQuality",
    "Category",
    "Note",
    "NoteType",
    "Settings",
    "ThemeMode",
    "WireModel",
]
