"""Unit tests for DynamoDB manager."""
from decimal import Decimal
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from storage.dynamodb_manager import DynamoDBManager, EXTERNAL_EVENT_ID_KEY, LOCK_ID


@pytest.fixture
def dynamodb_manager(dynamodb_table):
    """Create DynamoDBManager instance with mock table."""
    return DynamoDBManager('test-humanitix-events')


class TestCreateAndLookup:
    """Test record creation and index lookups."""

    def test_create_returns_local_id(self, dynamodb_manager):
        local_id = dynamodb_manager.create('venue', {
            'name': 'Savannah Center',
            'city': 'The Villages',
            'latitude': 28.93,
            'phone': None
        })

        item = dynamodb_manager.get(local_id)
        assert item['kind'] == 'venue'
        assert item['name'] == 'Savannah Center'
        assert item['latitude'] == Decimal('28.93')
        assert 'phone' not in item
        assert 'created_at' in item

    def test_find_by_name_is_exact(self, dynamodb_manager):
        local_id = dynamodb_manager.create('venue', {'name': 'Savannah Center'})
        dynamodb_manager.create('organizer', {'name': 'Savannah Center'})

        assert dynamodb_manager.find_by_name('venue', 'Savannah Center') == local_id
        assert dynamodb_manager.find_by_name('venue', 'savannah center') is None
        assert dynamodb_manager.find_by_name('venue', '') is None

    def test_find_by_external_id(self, dynamodb_manager):
        local_id = dynamodb_manager.create('event', {'name': 'Bingo'})
        dynamodb_manager.set_metadata(local_id, EXTERNAL_EVENT_ID_KEY, 'evt-1')

        assert dynamodb_manager.find_by_external_id('evt-1') == local_id
        assert dynamodb_manager.find_by_external_id('evt-2') is None
        assert dynamodb_manager.find_by_external_id('') is None

    def test_create_error_returns_none(self, dynamodb_manager):
        error = ClientError(
            {'Error': {'Code': 'ValidationException', 'Message': 'bad item'}},
            'PutItem'
        )
        with patch.object(dynamodb_manager.table, 'put_item', side_effect=error):
            assert dynamodb_manager.create('event', {'name': 'Bingo'}) is None

    def test_unserializable_value_returns_none(self, dynamodb_manager):
        assert dynamodb_manager.create('venue', {'name': 'V', 'latitude': float('nan')}) is None
        assert dynamodb_manager.find_by_name('venue', 'V') is None


class TestUpdate:
    """Test record updates."""

    def test_update_sets_and_removes(self, dynamodb_manager):
        local_id = dynamodb_manager.create('event', {'name': 'Bingo', 'venue_id': 'v1'})

        assert dynamodb_manager.update(local_id, {
            'name': 'Bingo Night',
            'venue_id': None,
            'cost_summary': '$5'
        }) is True

        item = dynamodb_manager.get(local_id)
        assert item['name'] == 'Bingo Night'
        assert item['cost_summary'] == '$5'
        assert 'venue_id' not in item

    def test_update_unserializable_value(self, dynamodb_manager):
        local_id = dynamodb_manager.create('event', {'name': 'Bingo'})

        assert dynamodb_manager.update(local_id, {'latitude': float('inf')}) is False

    def test_update_missing_record(self, dynamodb_manager):
        assert dynamodb_manager.update('does-not-exist', {'name': 'x'}) is False
        assert dynamodb_manager.get('does-not-exist') is None

    def test_update_ignores_key_attributes(self, dynamodb_manager):
        local_id = dynamodb_manager.create('event', {'name': 'Bingo'})

        dynamodb_manager.update(local_id, {'kind': 'venue', 'local_id': 'other'})

        assert dynamodb_manager.get(local_id)['kind'] == 'event'


class TestRunLock:
    """Test the run-level import lock."""

    def test_lock_is_exclusive(self, dynamodb_manager):
        assert dynamodb_manager.acquire_lock('run-1') is True
        assert dynamodb_manager.acquire_lock('run-2') is False

        assert dynamodb_manager.release_lock('run-2') is False
        assert dynamodb_manager.release_lock('run-1') is True
        assert dynamodb_manager.acquire_lock('run-2') is True

    def test_stale_lock_is_taken_over(self, dynamodb_manager, dynamodb_table):
        dynamodb_table.put_item(Item={
            'local_id': LOCK_ID,
            'kind': 'lock',
            'owner': 'crashed-run',
            'expires_at': 1
        })

        assert dynamodb_manager.acquire_lock('run-1') is True
        assert dynamodb_manager.get(LOCK_ID)['owner'] == 'run-1'
