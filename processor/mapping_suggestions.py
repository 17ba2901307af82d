"""Heuristic field mapping suggestions for schema discovery."""
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterator, List

from processor.field_mapper import DIRECT_FIELDS
from processor.models import RawEvent

SAMPLE_LENGTH = 50

# Keyword -> target field, checked in order against the lower-cased key.
KEYWORD_TARGETS = (
    ('created', 'metadata.humanitix_created_at'),
    ('updated', 'metadata.humanitix_updated_at'),
    ('capacity', 'metadata.humanitix_capacity'),
    ('venue', 'venue'),
    ('location', 'venue'),
    ('address', 'venue.address'),
    ('city', 'venue.city'),
    ('state', 'venue.region'),
    ('region', 'venue.region'),
    ('zip', 'venue.postal_code'),
    ('postal', 'venue.postal_code'),
    ('country', 'venue.country'),
    ('organi', 'organizer'),
    ('image', 'image_url'),
    ('photo', 'image_url'),
    ('title', 'title'),
    ('name', 'title'),
    ('description', 'content'),
    ('content', 'content'),
    ('body', 'content'),
    ('summary', 'excerpt'),
    ('start', 'start_at'),
    ('end', 'end_at'),
    ('date', 'start_at'),
    ('time', 'start_at'),
    ('timezone', 'timezone'),
    ('price', 'cost_summary'),
    ('cost', 'cost_summary'),
    ('fee', 'cost_summary'),
    ('currency', 'currency'),
    ('url', 'url'),
    ('link', 'url'),
    ('series', 'series'),
    ('recur', 'series'),
)


@dataclass(frozen=True)
class MappingSuggestion:
    """A guessed mapping for a source field the mapper does not rename."""
    source_field: str
    suggested_target_field: str
    sample_value: str


def suggest_target(field_name: str) -> str:
    """
    Guess a canonical target for a source field name.

    Args:
        field_name: Source key (last path segment)

    Returns:
        Target field name, or metadata.<field_name> when nothing matches
    """
    lowered = field_name.lower()
    for keyword, target in KEYWORD_TARGETS:
        if keyword in lowered:
            return target
    return f"metadata.{field_name}"


def _sample(value: Any) -> str:
    if isinstance(value, str):
        return value[:SAMPLE_LENGTH]
    return json.dumps(value, default=str)[:SAMPLE_LENGTH]


class MappingSuggester:
    """Produces mapping suggestions; has no effect on FieldMapper output."""

    def __init__(self):
        self.covered_fields = {source for source, _ in DIRECT_FIELDS}

    def iter_suggestions(self, raw_event: RawEvent) -> Iterator[MappingSuggestion]:
        """Yield suggestions for every key not covered by the rename table."""
        if not isinstance(raw_event, Mapping):
            return
        for key, value in raw_event.items():
            if key in self.covered_fields:
                continue
            yield MappingSuggestion(key, suggest_target(key), _sample(value))

            if isinstance(value, Mapping):
                for child_key, child_value in value.items():
                    yield MappingSuggestion(
                        f"{key}.{child_key}",
                        suggest_target(child_key),
                        _sample(child_value)
                    )
            elif isinstance(value, list):
                for index, item in enumerate(value):
                    if not isinstance(item, Mapping):
                        continue
                    for child_key, child_value in item.items():
                        yield MappingSuggestion(
                            f"{key}[{index}].{child_key}",
                            suggest_target(child_key),
                            _sample(child_value)
                        )

    def suggest_mappings(self, raw_event: RawEvent) -> List[MappingSuggestion]:
        return list(self.iter_suggestions(raw_event))
