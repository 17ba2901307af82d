"""Import orchestrator driving the Humanitix -> local datastore pipeline."""
import dataclasses
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from humanitix.api_client import HumanitixAPIError
from importer.config import ImportOptions
from importer.resolvers import DuplicateResolver, ImportContext, RelatedEntityResolver
from processor.field_mapper import FieldMapper
from processor.models import CanonicalEvent, ImportRunResult, RawEvent, RecordOutcome
from processor.series_detector import SeriesDetector
from storage.dynamodb_manager import EXTERNAL_EVENT_ID_KEY

logger = logging.getLogger(__name__)

LAST_IMPORT_KEY = 'humanitix_last_import'
COLLECT_EVERY_BATCHES = 3


class ImportAbortedError(Exception):
    """Raised when a run cannot proceed at all (auth or network failure)."""


class ImportOrchestrator:
    """Fetches Humanitix events and creates or updates local records."""

    def __init__(
        self,
        client,
        store,
        memory_probe,
        batch_size: int = 25,
        mapper: Optional[FieldMapper] = None,
        detector: Optional[SeriesDetector] = None,
        media_store=None
    ):
        """
        Initialize the orchestrator.

        Args:
            client: HumanitixClient (fetch_page, fetch_one)
            store: Local datastore (DynamoDBManager)
            memory_probe: MemoryProbe used for batch sizing
            batch_size: Configured base batch size
            mapper: FieldMapper (default instance if omitted)
            detector: SeriesDetector (default instance if omitted)
            media_store: Optional MediaStore for image copies
        """
        self.client = client
        self.store = store
        self.memory_probe = memory_probe
        self.batch_size = batch_size
        self.mapper = mapper or FieldMapper()
        self.detector = detector or SeriesDetector()
        self.duplicates = DuplicateResolver(store)
        self.related = RelatedEntityResolver(store, media_store)

    def run(
        self,
        options: Optional[ImportOptions] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ImportRunResult:
        """
        Run a full import.

        Args:
            options: Run options (defaults when omitted)
            cancel_event: Set to stop the run at the next record boundary

        Returns:
            ImportRunResult summarising the run

        Raises:
            ImportAbortedError: If the API rejects the credentials or cannot
                be reached at all
        """
        context = ImportContext(options=options or ImportOptions(), cancel_event=cancel_event)
        result = context.result
        start_time = time.time()

        logger.info(
            'Import run started',
            extra={'context': {'run_id': context.run_id, **dataclasses.asdict(context.options)}}
        )

        raw_events = self._fetch_all(context)
        result.fetched_count = len(raw_events)

        self._process(raw_events, context)

        result.duration = time.time() - start_time
        self._log_summary(context)
        return result

    def import_one(
        self,
        external_id: str,
        options: Optional[ImportOptions] = None
    ) -> ImportRunResult:
        """
        Import a single event by its Humanitix id.

        Args:
            external_id: Humanitix event id
            options: Run options

        Returns:
            ImportRunResult for the single record
        """
        context = ImportContext(options=options or ImportOptions())
        result = context.result
        start_time = time.time()

        try:
            raw_event = self.client.fetch_one(external_id)
        except HumanitixAPIError as e:
            if e.kind == 'auth':
                raise ImportAbortedError(f"Humanitix API rejected the credentials: {e}") from e
            logger.error(f"Failed to fetch event {external_id}: {e}")
            result.add_error(f"Failed to fetch event {external_id}: {e}")
            result.duration = time.time() - start_time
            return result

        result.fetched_count = 1
        self._process([raw_event], context)
        result.duration = time.time() - start_time
        self._log_summary(context)
        return result

    def _fetch_all(self, context: ImportContext) -> List[RawEvent]:
        """
        Fetch pages until one comes back empty or a limit is reached.

        Transport errors end pagination; they abort the run only when they
        are authentication failures or the first page could not be reached.
        """
        options = context.options
        logger.info('Fetching events from Humanitix')
        events: List[RawEvent] = []
        last_page = options.start_page + max(1, options.max_pages) - 1

        for page in range(options.start_page, last_page + 1):
            try:
                page_events = self.client.fetch_page(page)
            except HumanitixAPIError as e:
                if e.kind == 'auth':
                    raise ImportAbortedError(
                        f"Humanitix API rejected the credentials: {e}"
                    ) from e
                if page == options.start_page and e.kind in ('network', 'timeout'):
                    raise ImportAbortedError(f"Humanitix API is unreachable: {e}") from e
                logger.error(
                    f"Failed to fetch page {page}: {e}",
                    extra={'context': {'error_type': e.kind, 'status_code': e.status_code}}
                )
                context.result.add_error(f"Failed to fetch page {page}: {e}")
                break

            if not page_events:
                break
            events.extend(page_events)

            if options.limit and len(events) >= options.limit:
                break

        if options.limit and len(events) > options.limit:
            logger.info(f"Limited import from {len(events)} to {options.limit} events")
            events = events[:options.limit]

        logger.info(f"Fetched {len(events)} events")
        return events

    def _process(self, raw_events: List[RawEvent], context: ImportContext) -> None:
        result = context.result
        total = len(raw_events)
        if total == 0:
            logger.info('No events found to import')
            return

        batch_size = self.memory_probe.batch_size(self.batch_size, total)
        batches = [raw_events[i:i + batch_size] for i in range(0, total, batch_size)]
        logger.info(
            f"Processing {total} events in {len(batches)} batches of {batch_size}",
            extra={'context': self.memory_probe.info()}
        )

        processed = 0
        for batch_index, batch in enumerate(batches):
            if not self._memory_allows_batch(batch_index):
                result.aborted_reason = (
                    f"Memory budget exceeded; stopped after {processed} of {total} events"
                )
                logger.critical(result.aborted_reason, extra={'context': self.memory_probe.info()})
                break

            for raw_event in batch:
                if context.cancelled:
                    result.aborted_reason = (
                        f"Import cancelled after {processed} of {total} events"
                    )
                    logger.warning(result.aborted_reason)
                    break

                outcome = self._safe_import(raw_event, context)
                processed += 1
                if outcome.action == 'created':
                    result.imported_count += 1
                elif outcome.action == 'updated':
                    result.updated_count += 1
                else:
                    result.add_error(outcome.message)

            if context.cancelled:
                break

            if (batch_index + 1) % COLLECT_EVERY_BATCHES == 0:
                self.memory_probe.collect()

        result.skipped_count += total - processed

    def _memory_allows_batch(self, batch_index: int) -> bool:
        if self.memory_probe.is_safe():
            return True
        logger.warning(
            f"Memory usage high before batch {batch_index + 1}, forcing garbage collection"
        )
        self.memory_probe.collect()
        return self.memory_probe.is_safe()

    def _safe_import(self, raw_event: RawEvent, context: ImportContext) -> RecordOutcome:
        try:
            return self.import_record(raw_event, context)
        except Exception as e:
            title = raw_event.get('name') or raw_event.get('title') or 'Unknown'
            external_id = raw_event.get('_id') or raw_event.get('id') or 'unknown'
            logger.error(
                f"Unexpected error importing event '{title}' ({external_id}): {e}",
                exc_info=True
            )
            return RecordOutcome(
                action='failed',
                message=f"Failed to import event '{title}' ({external_id}): {e}"
            )

    def import_record(self, raw_event: RawEvent, context: ImportContext) -> RecordOutcome:
        """
        Import one raw event.

        Args:
            raw_event: Event document from the API
            context: Current run context

        Returns:
            RecordOutcome (created, updated or failed)
        """
        series = self.detector.detect(raw_event)
        event = dataclasses.replace(self.mapper.map(raw_event), series=series)

        for warning in event.warnings:
            logger.warning(
                f"Event '{event.title or 'Unknown'}' ({event.external_id}): {warning}"
            )

        venue_id = self.related.resolve_venue(event.venue, context)
        organizer_id = self.related.resolve_organizer(event.organizer, context)
        image_id = None
        if context.options.fetch_images:
            image_id = self.related.resolve_image(event.image_url, context)

        fields = self.event_fields(event, venue_id, organizer_id, image_id)
        local_id = self.duplicates.find(event.external_id)
        now = datetime.now(timezone.utc).isoformat()

        if local_id:
            if not self.store.update(local_id, fields):
                return self._failed('update', event)
            self.store.set_metadata(local_id, LAST_IMPORT_KEY, now)
            action = 'updated'
        else:
            # Cross-reference is written with the record, never separately
            local_id = self.store.create(
                'event', dict(fields, **{EXTERNAL_EVENT_ID_KEY: event.external_id})
            )
            if local_id is None:
                return self._failed('create', event)
            self.store.set_metadata(local_id, LAST_IMPORT_KEY, now)
            action = 'created'

        logger.info(
            f"Event {action}",
            extra={'context': {
                'local_id': local_id,
                'humanitix_id': event.external_id,
                'event_title': event.title,
                'venue_id': venue_id,
                'organizer_id': organizer_id,
                'is_series': series is not None
            }}
        )
        return RecordOutcome(action=action, local_id=local_id)

    def _failed(self, action: str, event: CanonicalEvent) -> RecordOutcome:
        message = f"Failed to {action} event '{event.title}' ({event.external_id})"
        logger.error(message)
        return RecordOutcome(action='failed', message=message)

    def event_fields(
        self,
        event: CanonicalEvent,
        venue_id: Optional[str],
        organizer_id: Optional[str],
        image_id: Optional[str]
    ) -> Dict[str, Any]:
        """
        Build the stored attributes of an event record.

        Args:
            event: Canonical event
            venue_id: Resolved local venue id
            organizer_id: Resolved local organizer id
            image_id: Resolved local attachment id

        Returns:
            Attribute dictionary; None values clear the attribute on update
        """
        fields: Dict[str, Any] = {
            'name': event.title,
            'title': event.title,
            'content': event.content,
            'excerpt': event.excerpt,
            'start_at': event.start_at.isoformat() if event.start_at else None,
            'end_at': event.end_at.isoformat() if event.end_at else None,
            'timezone': event.timezone,
            'cost_summary': event.cost_summary,
            'currency': event.currency,
            'url': event.url,
            'image_url': event.image_url,
            'venue_id': venue_id,
            'organizer_id': organizer_id,
            'image_id': image_id
        }

        series = event.series
        fields['humanitix_series_id'] = series.series_id if series else None
        fields['humanitix_parent_event_id'] = series.parent_event_id if series else None
        fields['humanitix_series_instance'] = series.instance_number if series else None
        fields['humanitix_series_total'] = series.total_instances if series else None
        fields['humanitix_recurrence_rule'] = series.recurrence_rule if series else None

        fields.update(event.metadata)
        return fields

    def _log_summary(self, context: ImportContext) -> None:
        result = context.result
        logger.info(
            f"Import completed: {result.imported_count} new events, "
            f"{result.updated_count} updated events, {result.skipped_count} skipped "
            f"in {result.duration:.2f} seconds",
            extra={'context': {'run_id': context.run_id, **result.to_summary()}}
        )
        for error in result.errors:
            logger.error(f"Import error: {error}")
