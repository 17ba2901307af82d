"""Schema analyzer for Humanitix event documents.

Classifies every top-level field of a raw event as scalar, array or nested
object. Used for operator-facing schema discovery only; the import pipeline
never depends on it.

Run from the command line:

    humanitix-schema-analyzer --limit 5
    humanitix-schema-analyzer --file sample_events.json
"""
import argparse
import json
import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from processor.field_mapper import FieldMapper
from processor.mapping_suggestions import MappingSuggester
from processor.models import RawEvent

logger = logging.getLogger(__name__)

SCALAR = 'scalar'
ARRAY = 'array'
OBJECT = 'object'

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass
class FieldInfo:
    """Classification of one field."""
    name: str
    kind: str
    type_name: str
    value: Any


@dataclass
class SchemaAnalysis:
    """Field classification of one event document."""
    fields: Dict[str, FieldInfo] = field(default_factory=dict)
    scalars: List[str] = field(default_factory=list)
    arrays: List[str] = field(default_factory=list)
    nested_objects: List[str] = field(default_factory=list)
    empty_fields: List[str] = field(default_factory=list)


class SchemaAnalyzer:
    """Inspects raw event documents and classifies their fields."""

    def classify(self, value: Any) -> str:
        if isinstance(value, Mapping):
            return OBJECT
        if isinstance(value, (list, tuple)):
            return ARRAY
        return SCALAR

    def analyze(self, raw_event: RawEvent) -> SchemaAnalysis:
        """
        Classify each field of an event document.

        Args:
            raw_event: Event document from the API

        Returns:
            SchemaAnalysis with per-field details
        """
        analysis = SchemaAnalysis()
        if not isinstance(raw_event, Mapping):
            return analysis

        for name, value in raw_event.items():
            kind = self.classify(value)
            analysis.fields[name] = FieldInfo(
                name=name,
                kind=kind,
                type_name=type(value).__name__,
                value=value
            )
            if kind == OBJECT:
                analysis.nested_objects.append(name)
            elif kind == ARRAY:
                analysis.arrays.append(name)
            else:
                analysis.scalars.append(name)

            if value is None or value == '' or value == [] or value == {}:
                analysis.empty_fields.append(name)

        return analysis


def _preview(value: Any, length: int = 30) -> str:
    if isinstance(value, str):
        return value[:length]
    return json.dumps(value, default=str)[:length]


def _load_events(args, out) -> List[RawEvent]:
    if args.file:
        with open(args.file, 'r', encoding='utf-8') as handle:
            data = json.load(handle)
        if isinstance(data, Mapping):
            data = data.get('data') or data.get('events') or [data]
        return list(data)[:args.limit]

    from humanitix.api_client import HumanitixClient
    from importer.config import ImporterSettings

    settings = ImporterSettings.from_env()
    settings.validate()
    client = HumanitixClient(
        api_key=settings.api_key,
        base_url=settings.api_endpoint,
        org_id=settings.org_id,
        timeout=settings.timeout_seconds
    )
    out.write(f"API Endpoint: {settings.api_endpoint}\n")
    return client.fetch_page(1)[:args.limit]


def render_report(events: List[RawEvent], out) -> None:
    """Write the field analysis, suggestions and mapped preview per event."""
    analyzer = SchemaAnalyzer()
    suggester = MappingSuggester()
    mapper = FieldMapper()

    for index, raw_event in enumerate(events, start=1):
        analysis = analyzer.analyze(raw_event)
        out.write(f"Event {index}:\n")
        out.write(f"  Fields found: {len(analysis.fields)}\n")
        out.write(f"  Scalars: {len(analysis.scalars)}\n")
        out.write(f"  Nested objects: {len(analysis.nested_objects)}\n")
        out.write(f"  Arrays: {len(analysis.arrays)}\n\n")

        out.write("  Field details:\n")
        for info in analysis.fields.values():
            out.write(f"    {info.name} ({info.kind}, {info.type_name}): {_preview(info.value)}\n")

        out.write("\n  Suggested field mappings:\n")
        for suggestion in suggester.iter_suggestions(raw_event):
            out.write(
                f"    {suggestion.source_field} -> {suggestion.suggested_target_field} "
                f"({suggestion.sample_value})\n"
            )

        event = mapper.map(raw_event)
        out.write("\n  Mapped preview:\n")
        out.write(f"    external_id: {event.external_id}\n")
        out.write(f"    title: {event.title or 'Not set'}\n")
        out.write(f"    start_at: {event.start_at.isoformat() if event.start_at else 'Not set'}\n")
        out.write(f"    cost: {event.cost_summary}\n")
        out.write(f"    venue: {event.venue.name if event.venue else 'None'}\n")
        out.write(f"    metadata fields: {len(event.metadata)}\n")
        for warning in event.warnings:
            out.write(f"    warning: {warning}\n")
        out.write("\n")


def main(argv: Optional[List[str]] = None, out=None) -> int:
    """
    Command line entry point.

    Args:
        argv: Argument list (defaults to sys.argv)
        out: Output stream (defaults to stdout)

    Returns:
        Process exit code
    """
    out = out or sys.stdout
    parser = argparse.ArgumentParser(
        description='Analyze Humanitix event structure and suggest field mappings.'
    )
    parser.add_argument('--limit', type=int, default=DEFAULT_LIMIT,
                        help=f'Number of events to analyze (1-{MAX_LIMIT})')
    parser.add_argument('--file', help='Analyze events from a JSON file instead of the API')
    args = parser.parse_args(argv)
    args.limit = min(max(args.limit, 1), MAX_LIMIT)

    out.write("=== Humanitix API Schema Analyzer ===\n\n")
    try:
        events = _load_events(args, out)
    except Exception as e:
        logger.error(f"Could not load sample events: {e}", exc_info=True)
        out.write(f"Error: {e}\n")
        return 1

    if not events:
        out.write("No events found to analyze.\n")
        return 1

    out.write(f"Analyzing {len(events)} events...\n\n")
    render_report(events, out)
    out.write("=== Analysis Complete ===\n")
    return 0


if __name__ == '__main__':
    sys.exit(main())
