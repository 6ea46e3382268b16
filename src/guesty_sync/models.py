"""Pydantic models for remote listings, local records, and sync reports."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Final

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Fields overwritten on every sighting of an existing record
MUTABLE_FIELDS: Final = (
    "title",
    "description",
    "external_booking_url",
    "bedrooms",
    "bathrooms",
)

# Largest bedroom/bathroom count accepted from the provider
MAX_ROOM_COUNT: Final = 10_000


class RawPhoto(BaseModel):
    """One photo object from a listing; any size key may be missing."""

    model_config = ConfigDict(extra="ignore")

    xlarge: Any = None
    large: Any = None


class RawEntry(BaseModel):
    """A listing item exactly as received from the provider.

    Every field is optional and untyped: the payload is untrusted and the
    sanitizer decides what each value is worth.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Any = None
    title: Any = None
    description: Any = None
    external_listing_url: Any = Field(
        default=None,
        validation_alias=AliasChoices("externalListingUrl", "external_listing_url"),
    )
    bedrooms: Any = None
    bathrooms: Any = None
    photos: Any = None


class RemoteProperty(BaseModel):
    """A sanitized listing, valid for one sync cycle."""

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(min_length=1, description="Provider listing ID")
    title: str = ""
    description: str = ""
    external_booking_url: str | None = None
    bedrooms: int = Field(default=0, ge=0, le=MAX_ROOM_COUNT)
    bathrooms: int = Field(default=0, ge=0, le=MAX_ROOM_COUNT)
    photo_urls: tuple[str, ...] = ()

    @property
    def primary_photo_url(self) -> str | None:
        """First photo, used as the featured image on creation."""
        return self.photo_urls[0] if self.photo_urls else None

    def mutable_fields(self) -> dict[str, Any]:
        """Fields written on create and overwritten on update."""
        return {name: getattr(self, name) for name in MUTABLE_FIELDS}


class RecordStatus(str, Enum):
    """Lifecycle status of a stored property record."""

    ACTIVE = "active"
    RETIRED = "retired"


class PropertyRecord(BaseModel):
    """A property persisted by the local store."""

    model_config = ConfigDict(frozen=True)

    local_id: int
    external_id: str
    title: str = ""
    description: str = ""
    external_booking_url: str | None = None
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    featured_image_ref: str | None = None
    status: RecordStatus = RecordStatus.ACTIVE
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    retired_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.ACTIVE

    def mutable_fields(self) -> dict[str, Any]:
        """Fields that a sync overwrites."""
        return {name: getattr(self, name) for name in MUTABLE_FIELDS}


class SyncStatus(str, Enum):
    """Outcome of a sync cycle."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DroppedEntry:
    """A raw entry excluded by the sanitizer."""

    index: int
    reason: str
    external_id: str | None = None


@dataclass
class SyncReport:
    """Counts and sub-errors for one sync cycle."""

    status: SyncStatus = SyncStatus.SUCCESS
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    reactivated: int = 0
    retired: int = 0
    drops: list[DroppedEntry] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    error: str | None = None
    run_id: int | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def skipped(self) -> int:
        """Number of raw entries dropped during sanitization."""
        return len(self.drops)

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.updated or self.reactivated or self.retired)

    def as_counts(self) -> dict[str, int]:
        """Counts keyed by column name, for logging and run tracking."""
        return {
            "created_count": self.created,
            "updated_count": self.updated,
            "unchanged_count": self.unchanged,
            "reactivated_count": self.reactivated,
            "retired_count": self.retired,
            "skipped_count": self.skipped,
            "error_count": len(self.errors),
        }
