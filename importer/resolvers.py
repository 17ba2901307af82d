"""Resolution of canonical events and their relations to local records."""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from importer.config import ImportOptions
from processor.models import ImportRunResult, OrganizerRecord, VenueRecord

logger = logging.getLogger(__name__)

VENUE_REFERENCE_KEY = 'humanitix_venue_id'
ORGANIZER_REFERENCE_KEY = 'humanitix_organizer_id'


@dataclass
class ImportContext:
    """State owned by a single import run.

    The name -> local id caches live here so nothing leaks between runs.
    """
    options: ImportOptions = field(default_factory=ImportOptions)
    result: ImportRunResult = field(default_factory=ImportRunResult)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: Optional[threading.Event] = None
    venue_ids: Dict[str, str] = field(default_factory=dict)
    organizer_ids: Dict[str, str] = field(default_factory=dict)
    attachment_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class DuplicateResolver:
    """Finds the local event matching a Humanitix event id."""

    def __init__(self, store):
        self.store = store

    def find(self, external_id: str) -> Optional[str]:
        """
        Look up the local event for an external id.

        Exact match only; an event whose cross-reference was lost is
        treated as new.

        Args:
            external_id: Humanitix event id

        Returns:
            Local id or None
        """
        if not external_id:
            return None
        return self.store.find_by_external_id(external_id)


class RelatedEntityResolver:
    """Resolves embedded venues, organizers and images to local records."""

    def __init__(self, store, media_store=None):
        """
        Initialize the resolver.

        Args:
            store: Local datastore
            media_store: Optional MediaStore used to keep image copies
        """
        self.store = store
        self.media_store = media_store

    def resolve_venue(self, venue: Optional[VenueRecord], context: ImportContext) -> Optional[str]:
        """
        Resolve a venue to a local id, creating it when missing.

        Args:
            venue: Venue embedded in the event
            context: Current run context

        Returns:
            Local venue id, or None if absent or creation failed
        """
        if venue is None:
            return None
        if venue.name in context.venue_ids:
            return context.venue_ids[venue.name]

        fields = {
            'name': venue.name,
            'address': venue.address,
            'city': venue.city,
            'region': venue.region,
            'postal_code': venue.postal_code,
            'country': venue.country,
            'phone': venue.phone,
            'website': venue.website
        }
        if venue.lat_lng:
            fields['latitude'], fields['longitude'] = venue.lat_lng

        local_id = self._find_or_create(
            'venue',
            venue.name,
            fields,
            VENUE_REFERENCE_KEY,
            venue.external_id,
            context.options.create_venues
        )
        if local_id:
            context.venue_ids[venue.name] = local_id
        return local_id

    def resolve_organizer(
        self,
        organizer: Optional[OrganizerRecord],
        context: ImportContext
    ) -> Optional[str]:
        """
        Resolve an organizer to a local id, creating it when missing.

        Args:
            organizer: Organizer embedded in the event
            context: Current run context

        Returns:
            Local organizer id, or None if absent or creation failed
        """
        if organizer is None:
            return None
        if organizer.name in context.organizer_ids:
            return context.organizer_ids[organizer.name]

        fields = {
            'name': organizer.name,
            'email': organizer.email,
            'phone': organizer.phone,
            'website': organizer.website
        }
        local_id = self._find_or_create(
            'organizer',
            organizer.name,
            fields,
            ORGANIZER_REFERENCE_KEY,
            organizer.external_id,
            context.options.create_organizers
        )
        if local_id:
            context.organizer_ids[organizer.name] = local_id
        return local_id

    def resolve_image(self, image_url: Optional[str], context: ImportContext) -> Optional[str]:
        """
        Resolve an image URL to a local attachment record.

        Args:
            image_url: Source image URL
            context: Current run context

        Returns:
            Local attachment id, or None if absent or the download failed
        """
        if not image_url:
            return None
        if image_url in context.attachment_ids:
            return context.attachment_ids[image_url]

        local_id = self.store.find_by_name('attachment', image_url)
        if local_id is None:
            fields: Dict[str, Any] = {'name': image_url, 'source_url': image_url}
            if self.media_store is not None:
                key = self.media_store.store_image(image_url)
                if key is None:
                    return None
                fields['s3_bucket'] = self.media_store.bucket
                fields['s3_key'] = key

            local_id = self.store.create('attachment', fields)
            if local_id is None:
                logger.warning(
                    'Failed to create image attachment',
                    extra={'context': {'image_url': image_url}}
                )
                return None

        context.attachment_ids[image_url] = local_id
        return local_id

    def _find_or_create(
        self,
        kind: str,
        name: str,
        fields: Dict[str, Any],
        reference_key: str,
        external_id: str,
        allow_create: bool
    ) -> Optional[str]:
        existing = self.store.find_by_name(kind, name)
        if existing:
            logger.info(
                f"Using existing {kind}: {name}",
                extra={'context': {f'{kind}_id': existing, 'external_id': external_id}}
            )
            return existing

        if not allow_create:
            logger.info(f"No {kind} named '{name}' and creation is disabled")
            return None

        local_id = self.store.create(kind, fields)
        if local_id is None:
            logger.error(
                f"Failed to create {kind}: {name}",
                extra={'context': {'external_id': external_id}}
            )
            return None

        if external_id and not self.store.set_metadata(local_id, reference_key, external_id):
            logger.warning(f"Could not store {reference_key} on {kind} {local_id}")

        logger.info(
            f"Created new {kind}: {name}",
            extra={'context': {f'{kind}_id': local_id, 'external_id': external_id}}
        )
        return local_id
