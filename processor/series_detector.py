"""Detection of recurring/series events in Humanitix data."""
import logging
from typing import Any, Mapping, Optional

from processor.models import RawEvent, SeriesDescriptor

logger = logging.getLogger(__name__)

SERIES_INDICATORS = (
    'series_id',
    'series',
    'recurring',
    'recurrence',
    'parent_event_id',
    'instance_number',
    'total_instances',
)

# Rule token order is fixed.
RECURRENCE_PARTS = (
    ('frequency', 'FREQ'),
    ('interval', 'INTERVAL'),
    ('count', 'COUNT'),
    ('until', 'UNTIL'),
    ('byday', 'BYDAY'),
)


def _is_present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip() not in ('', '0')
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _coerce_count(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 1
    return max(1, number)


def build_recurrence_rule(recurrence: Mapping[str, Any]) -> str:
    """
    Build an iCalendar-like recurrence rule from a recurrence mapping.

    Only sub-fields that are present contribute a token.

    Args:
        recurrence: Mapping with frequency, interval, count, until, byday

    Returns:
        Semicolon-joined KEY=VALUE tokens (e.g. "FREQ=WEEKLY;INTERVAL=2")
    """
    tokens = []
    for source_key, token in RECURRENCE_PARTS:
        value = recurrence.get(source_key)
        if value is None:
            continue
        if source_key == 'frequency':
            value = str(value).upper()
        elif isinstance(value, (list, tuple)):
            value = ','.join(str(item) for item in value)
        tokens.append(f"{token}={value}")
    return ';'.join(tokens)


class SeriesDetector:
    """Classifies raw events as series instances and extracts series data."""

    def is_series(self, raw_event: RawEvent) -> bool:
        """
        Check whether a raw event carries any series indicator.

        Args:
            raw_event: Event document from the API

        Returns:
            True if the event looks like part of a series
        """
        return any(_is_present(raw_event.get(indicator)) for indicator in SERIES_INDICATORS)

    def detect(self, raw_event: RawEvent) -> Optional[SeriesDescriptor]:
        """
        Extract a series descriptor from a raw event.

        Args:
            raw_event: Event document from the API

        Returns:
            SeriesDescriptor, or None when the event is not part of a series
            or no series/parent identifier could be resolved
        """
        if not self.is_series(raw_event):
            return None

        series_id = ''
        parent_event_id = ''
        series = raw_event.get('series')

        if raw_event.get('series_id') is not None:
            series_id = str(raw_event['series_id']).strip()
        elif isinstance(series, Mapping) and series.get('id') is not None:
            series_id = str(series['id']).strip()
        elif raw_event.get('parent_event_id') is not None:
            parent_event_id = str(raw_event['parent_event_id']).strip()

        if not series_id and not parent_event_id:
            logger.debug(
                f"Series indicators present but no identifier for event "
                f"'{raw_event.get('name') or raw_event.get('title') or 'Unknown'}'"
            )
            return None

        instance_number = 1
        if raw_event.get('instance_number') is not None:
            instance_number = _coerce_count(raw_event['instance_number'])

        total_instances = 1
        if raw_event.get('total_instances') is not None:
            total_instances = _coerce_count(raw_event['total_instances'])

        recurrence_rule = ''
        recurrence = raw_event.get('recurrence')
        if isinstance(recurrence, Mapping):
            recurrence_rule = build_recurrence_rule(recurrence)

        return SeriesDescriptor(
            series_id=series_id,
            instance_number=instance_number,
            total_instances=total_instances,
            recurrence_rule=recurrence_rule,
            parent_event_id=parent_event_id
        )
