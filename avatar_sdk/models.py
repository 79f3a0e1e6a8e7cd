"""Domain models for the avatar SDK.

API payloads are pydantic models that accept the server's camelCase JSON;
unpacked bundles are plain dataclasses holding immutable bytes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ModelType(str, Enum):
    """Model variant to download."""

    FULL = "full"
    BASE = "base"


PublicModelStatus = Optional[Literal["full_ready", "base_ready", "failed"]]


class _APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class PublicModel(_APIModel):
    """Model download information for a character."""

    status: PublicModelStatus = None
    base_url: Optional[str] = None  # ~3-5 MB, faster load
    full_url: Optional[str] = None  # ~6-10 MB, more detail

    def url_for(self, preferred: ModelType) -> Optional[str]:
        """Return the preferred variant's URL, falling back to the other one."""
        if preferred == ModelType.FULL:
            return self.full_url or self.base_url or None
        return self.base_url or self.full_url or None


class Character(_APIModel):
    """Character information from the public API."""

    id: str
    name: str = ""
    tagline: str = ""
    quotes: list[str] = Field(default_factory=list)
    genre: str = ""
    pronouns: str = ""
    personality_tags: list[str] = Field(default_factory=list)
    avatar_url: str = ""
    story: str = ""
    public_model: Optional[PublicModel] = None


class Pagination(_APIModel):
    limit: int
    has_more: bool = False
    next_cursor: Optional[str] = None


class DiscoverResponse(_APIModel):
    """Response from the discover endpoint."""

    characters: list[Character] = Field(default_factory=list)
    pagination: Pagination


@dataclass(frozen=True)
class DownloadProgress:
    """Download progress information.

    Attributes:
        loaded: Bytes downloaded so far
        total: Total bytes (0 if unknown)
        percent: Progress percentage (0-100, or -1 if unknown)
    """
    loaded: int
    total: int
    percent: int


@dataclass(frozen=True)
class ModelFiles:
    """Files extracted from a .varie bundle.

    Attributes:
        skeleton: Parsed skeleton JSON
        atlas: Atlas text content
        texture: PNG texture bytes
        entries: Read-only map of every bundle path to its bytes
    """
    skeleton: Any
    atlas: str
    texture: bytes
    entries: Mapping[str, bytes]


@dataclass(frozen=True)
class UnpackedModel:
    """Unpacked model ready for a Spine runtime.

    Attributes:
        character_id: Character this model belongs to
        model_type: Variant that was unpacked
        files: Extracted files
        size: Size of the raw bundle in bytes
        cached_at: Epoch milliseconds when the model was unpacked
    """
    character_id: str
    model_type: ModelType
    files: ModelFiles
    size: int
    cached_at: int
