"""Shared fixtures for importer tests."""
import os
import uuid
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from storage.dynamodb_manager import EXTERNAL_EVENT_ID_KEY


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def dynamodb_table(aws_credentials):
    """Create a mock DynamoDB table with the importer's indexes."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName='test-humanitix-events',
            KeySchema=[
                {'AttributeName': 'local_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'local_id', 'AttributeType': 'S'},
                {'AttributeName': 'kind', 'AttributeType': 'S'},
                {'AttributeName': 'name', 'AttributeType': 'S'},
                {'AttributeName': EXTERNAL_EVENT_ID_KEY, 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'kind-name-index',
                    'KeySchema': [
                        {'AttributeName': 'kind', 'KeyType': 'HASH'},
                        {'AttributeName': 'name', 'KeyType': 'RANGE'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                },
                {
                    'IndexName': 'event-id-index',
                    'KeySchema': [
                        {'AttributeName': EXTERNAL_EVENT_ID_KEY, 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


class InMemoryStore:
    """Dictionary-backed stand-in for DynamoDBManager.

    Titles listed in ``fail_creates`` / ``fail_updates`` are rejected the
    way DynamoDB rejections surface from the real manager.
    """

    def __init__(self):
        self.records = {}
        self.fail_creates = set()
        self.fail_updates = set()
        self.create_calls = []

    def get(self, local_id):
        return self.records.get(local_id)

    def find_by_external_id(self, external_id):
        if not external_id:
            return None
        for local_id, record in self.records.items():
            if record.get(EXTERNAL_EVENT_ID_KEY) == external_id:
                return local_id
        return None

    def find_by_name(self, kind, name):
        if not name:
            return None
        for local_id, record in self.records.items():
            if record['kind'] == kind and record.get('name') == name:
                return local_id
        return None

    def create(self, kind, fields):
        self.create_calls.append((kind, fields))
        if fields.get('name') in self.fail_creates:
            return None
        local_id = uuid.uuid4().hex
        record = {key: value for key, value in fields.items() if value is not None}
        record['kind'] = kind
        self.records[local_id] = record
        return local_id

    def update(self, local_id, fields):
        if local_id not in self.records or fields.get('name') in self.fail_updates:
            return False
        record = self.records[local_id]
        for key, value in fields.items():
            if value is None:
                record.pop(key, None)
            else:
                record[key] = value
        return True

    def set_metadata(self, local_id, key, value):
        if local_id not in self.records:
            return False
        self.records[local_id][key] = value
        return True

    def add(self, kind, **fields):
        """Seed an existing record and return its local id."""
        local_id = uuid.uuid4().hex
        self.records[local_id] = dict(fields, kind=kind)
        return local_id

    def of_kind(self, kind):
        return [record for record in self.records.values() if record['kind'] == kind]


@pytest.fixture
def store():
    """Provide an empty in-memory datastore."""
    return InMemoryStore()
