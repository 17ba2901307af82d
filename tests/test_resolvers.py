"""Unit tests for duplicate and related entity resolution."""
from unittest.mock import Mock

import pytest

from importer.config import ImportOptions
from importer.resolvers import DuplicateResolver, ImportContext, RelatedEntityResolver
from processor.models import OrganizerRecord, VenueRecord
from storage.dynamodb_manager import EXTERNAL_EVENT_ID_KEY


@pytest.fixture
def context():
    """Create a fresh run context."""
    return ImportContext()


@pytest.fixture
def venue():
    return VenueRecord(name='Savannah Center', external_id='loc-1', city='The Villages',
                       lat_lng=(28.93, -81.96))


class TestDuplicateResolver:
    """Exact external id matching."""

    def test_finds_existing_event(self, store):
        local_id = store.add('event', name='Bingo', **{EXTERNAL_EVENT_ID_KEY: 'evt-1'})
        resolver = DuplicateResolver(store)

        assert resolver.find('evt-1') == local_id
        assert resolver.find('evt-1') == local_id
        assert len(store.records) == 1

    def test_novel_id(self, store):
        assert DuplicateResolver(store).find('evt-404') is None

    def test_empty_id_skips_lookup(self):
        store = Mock()

        assert DuplicateResolver(store).find('') is None
        store.find_by_external_id.assert_not_called()


class TestVenueResolution:
    """Venue find-or-create."""

    def test_absent_venue(self, store, context):
        assert RelatedEntityResolver(store).resolve_venue(None, context) is None
        assert store.records == {}

    def test_same_venue_twice_creates_once(self, store, context, venue):
        resolver = RelatedEntityResolver(store)

        first = resolver.resolve_venue(venue, context)
        second = resolver.resolve_venue(venue, context)

        assert first == second
        assert len(store.of_kind('venue')) == 1
        record = store.get(first)
        assert record['humanitix_venue_id'] == 'loc-1'
        assert record['city'] == 'The Villages'
        assert (record['latitude'], record['longitude']) == (28.93, -81.96)

    def test_existing_venue_reused(self, store, context, venue):
        local_id = store.add('venue', name='Savannah Center')

        assert RelatedEntityResolver(store).resolve_venue(venue, context) == local_id
        assert store.create_calls == []

    def test_name_match_is_case_sensitive(self, store, context, venue):
        store.add('venue', name='savannah center')

        RelatedEntityResolver(store).resolve_venue(venue, context)

        assert len(store.of_kind('venue')) == 2

    def test_creation_disabled(self, store, venue):
        context = ImportContext(options=ImportOptions(create_venues=False))

        assert RelatedEntityResolver(store).resolve_venue(venue, context) is None
        assert store.records == {}

    def test_creation_failure_yields_none(self, store, context, venue):
        store.fail_creates.add('Savannah Center')

        assert RelatedEntityResolver(store).resolve_venue(venue, context) is None

    def test_cache_is_scoped_to_run(self, store, venue):
        resolver = RelatedEntityResolver(store)
        first_run = ImportContext()
        resolver.resolve_venue(venue, first_run)

        assert ImportContext().venue_ids == {}
        assert first_run.venue_ids == {'Savannah Center': store.find_by_name('venue', 'Savannah Center')}


class TestOrganizerResolution:
    """Organizer find-or-create."""

    def test_creates_organizer(self, store, context):
        organizer = OrganizerRecord(name='Villages Jazz Club', external_id='org-1',
                                    email='jazz@example.com')

        local_id = RelatedEntityResolver(store).resolve_organizer(organizer, context)

        record = store.get(local_id)
        assert record['kind'] == 'organizer'
        assert record['email'] == 'jazz@example.com'
        assert record['humanitix_organizer_id'] == 'org-1'

    def test_absent_organizer(self, store, context):
        assert RelatedEntityResolver(store).resolve_organizer(None, context) is None


class TestImageResolution:
    """Image attachments."""

    def test_attachment_references_remote_url(self, store, context):
        url = 'https://cdn.example.com/a.jpg'

        local_id = RelatedEntityResolver(store).resolve_image(url, context)

        assert store.get(local_id)['source_url'] == url
        assert context.attachment_ids[url] == local_id

    def test_uses_media_store(self, store, context):
        media_store = Mock(bucket='test-media')
        media_store.store_image.return_value = 'media/abc/a.jpg'
        resolver = RelatedEntityResolver(store, media_store)

        local_id = resolver.resolve_image('https://cdn.example.com/a.jpg', context)
        resolver.resolve_image('https://cdn.example.com/a.jpg', context)

        record = store.get(local_id)
        assert record['s3_key'] == 'media/abc/a.jpg'
        assert record['s3_bucket'] == 'test-media'
        media_store.store_image.assert_called_once()

    def test_download_failure(self, store, context):
        media_store = Mock(bucket='test-media')
        media_store.store_image.return_value = None

        resolver = RelatedEntityResolver(store, media_store)

        assert resolver.resolve_image('https://cdn.example.com/a.jpg', context) is None
        assert store.records == {}

    def test_existing_attachment(self, store, context):
        local_id = store.add('attachment', name='https://cdn.example.com/a.jpg')

        assert RelatedEntityResolver(store).resolve_image(
            'https://cdn.example.com/a.jpg', context
        ) == local_id
