"""Data models for the Humanitix import pipeline."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

# Event document exactly as decoded from the Humanitix API.
RawEvent = Dict[str, Any]

ERROR_PREVIEW_LIMIT = 5
MAX_RECORDED_ERRORS = 100


@dataclass(frozen=True)
class SeriesDescriptor:
    """Recurrence/series information attached to a single event."""
    series_id: str = ''
    instance_number: int = 1
    total_instances: int = 1
    recurrence_rule: str = ''
    parent_event_id: str = ''


@dataclass(frozen=True)
class VenueRecord:
    """Venue embedded in an event, before resolution to a local record."""
    name: str
    external_id: str = ''
    address: str = ''
    city: str = ''
    region: str = ''
    postal_code: str = ''
    country: str = ''
    phone: str = ''
    website: str = ''
    lat_lng: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class OrganizerRecord:
    """Organizer embedded in an event, before resolution to a local record."""
    name: str
    external_id: str = ''
    email: str = ''
    phone: str = ''
    website: str = ''


@dataclass(frozen=True)
class CanonicalEvent:
    """Normalized event produced by the field mapper."""
    external_id: str
    title: str = ''
    content: str = ''
    excerpt: str = ''
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    timezone: str = 'UTC'
    cost_summary: str = 'Free'
    currency: str = ''
    url: str = ''
    venue: Optional[VenueRecord] = None
    organizer: Optional[OrganizerRecord] = None
    image_url: Optional[str] = None
    series: Optional[SeriesDescriptor] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()


@dataclass
class RecordOutcome:
    """Result of importing one event."""
    action: str  # created, updated or failed
    local_id: Optional[str] = None
    message: str = ''

    @property
    def succeeded(self) -> bool:
        return self.action != 'failed'


@dataclass
class ImportRunResult:
    """Summary of one import run."""
    imported_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0
    fetched_count: int = 0
    dropped_errors: int = 0
    aborted_reason: Optional[str] = None

    def add_error(self, message: str) -> None:
        """Record an error, keeping at most MAX_RECORDED_ERRORS entries."""
        if len(self.errors) < MAX_RECORDED_ERRORS:
            self.errors.append(message)
        else:
            self.dropped_errors += 1

    @property
    def error_count(self) -> int:
        return len(self.errors) + self.dropped_errors

    def error_preview(self, limit: int = ERROR_PREVIEW_LIMIT) -> List[str]:
        return self.errors[:limit]

    def to_summary(self) -> Dict[str, Any]:
        """
        Build the user-facing summary of the run.

        Returns:
            Dictionary with counts, duration and the first few errors
        """
        return {
            'fetched': self.fetched_count,
            'imported': self.imported_count,
            'updated': self.updated_count,
            'skipped': self.skipped_count,
            'error_count': self.error_count,
            'errors': self.error_preview(),
            'duration_seconds': round(self.duration, 2),
            'aborted_reason': self.aborted_reason
        }
