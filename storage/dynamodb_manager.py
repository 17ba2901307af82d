"""DynamoDB manager for locally imported events, venues and organizers."""
import logging
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

KIND_NAME_INDEX = 'kind-name-index'
EVENT_ID_INDEX = 'event-id-index'
EXTERNAL_EVENT_ID_KEY = 'humanitix_event_id'

# Attributes used as GSI keys may not hold empty strings
INDEX_KEY_ATTRIBUTES = ('kind', 'name', EXTERNAL_EVENT_ID_KEY)

LOCK_ID = '__import_run_lock__'


def _to_dynamo(value: Any) -> Any:
    """Convert a Python value into something DynamoDB accepts."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_dynamo(item) for key, item in value.items() if item is not None}
    return value


class DynamoDBManager:
    """Local datastore for imported records, backed by one DynamoDB table.

    Every record has a generated ``local_id`` partition key and a ``kind``
    (event, venue, organizer or attachment). Names are looked up through the
    ``kind-name-index`` GSI and events by their Humanitix id through the
    sparse ``event-id-index`` GSI.
    """

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def get(self, local_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a record by its local id.

        Args:
            local_id: Local record identifier

        Returns:
            Item dictionary or None if not found
        """
        try:
            response = self.table.get_item(Key={'local_id': local_id})
        except ClientError as e:
            logger.error(f"Error reading record {local_id}: {e}")
            raise
        return response.get('Item')

    def find_by_external_id(self, external_id: str) -> Optional[str]:
        """
        Find the local event carrying a Humanitix event id.

        Args:
            external_id: Humanitix event id

        Returns:
            Local id of the first match, or None
        """
        if not external_id:
            return None

        response = self.table.query(
            IndexName=EVENT_ID_INDEX,
            KeyConditionExpression=Key(EXTERNAL_EVENT_ID_KEY).eq(external_id)
        )
        items = response.get('Items', [])
        return items[0]['local_id'] if items else None

    def find_by_name(self, kind: str, name: str) -> Optional[str]:
        """
        Find a record of the given kind by exact (case-sensitive) name.

        Args:
            kind: Record kind (venue, organizer, event, attachment)
            name: Exact name to match

        Returns:
            Local id of the first match, or None
        """
        if not name:
            return None

        response = self.table.query(
            IndexName=KIND_NAME_INDEX,
            KeyConditionExpression=Key('kind').eq(kind) & Key('name').eq(name)
        )
        items = response.get('Items', [])
        return items[0]['local_id'] if items else None

    def create(self, kind: str, fields: Dict[str, Any]) -> Optional[str]:
        """
        Create a new record.

        Args:
            kind: Record kind
            fields: Attribute values; None values are skipped

        Returns:
            Generated local id, or None if the item could not be serialized
            or DynamoDB rejected the write
        """
        local_id = uuid.uuid4().hex
        item = {
            key: _to_dynamo(value)
            for key, value in fields.items()
            if value is not None and not (key in INDEX_KEY_ATTRIBUTES and value == '')
        }
        item.update({
            'local_id': local_id,
            'kind': kind,
            'created_at': int(time.time())
        })

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression=Attr('local_id').not_exists()
            )
        except (ClientError, BotoCoreError, TypeError, ValueError) as e:
            logger.error(f"Error creating {kind} record: {e}")
            return None

        logger.debug(f"Created {kind} record {local_id}")
        return local_id

    def update(self, local_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update attributes of an existing record.

        None values (and empty index keys) remove the attribute.

        Args:
            local_id: Local record identifier
            fields: Attribute values to set

        Returns:
            True if the update was applied, False otherwise
        """
        if not fields:
            return True

        names = {}
        values = {}
        set_clauses = []
        remove_clauses = []

        for index, (key, value) in enumerate(sorted(fields.items())):
            if key in ('local_id', 'kind'):
                continue
            placeholder = f"#f{index}"
            names[placeholder] = key
            if value is None or (key in INDEX_KEY_ATTRIBUTES and value == ''):
                remove_clauses.append(placeholder)
            else:
                values[f":v{index}"] = _to_dynamo(value)
                set_clauses.append(f"{placeholder} = :v{index}")

        expression = []
        if set_clauses:
            expression.append('SET ' + ', '.join(set_clauses))
        if remove_clauses:
            expression.append('REMOVE ' + ', '.join(remove_clauses))
        if not expression:
            return True

        names['#pk'] = 'local_id'
        params = {
            'Key': {'local_id': local_id},
            'UpdateExpression': ' '.join(expression),
            'ExpressionAttributeNames': names,
            'ConditionExpression': 'attribute_exists(#pk)'
        }
        if values:
            params['ExpressionAttributeValues'] = values

        try:
            self.table.update_item(**params)
        except (ClientError, BotoCoreError, TypeError, ValueError) as e:
            logger.error(f"Error updating record {local_id}: {e}")
            return False

        return True

    def set_metadata(self, local_id: str, key: str, value: Any) -> bool:
        """Set a single metadata attribute on a record."""
        return self.update(local_id, {key: value})

    def acquire_lock(self, owner: str, ttl_seconds: int = 900) -> bool:
        """
        Take the run-level import lock.

        An expired lock is taken over.

        Args:
            owner: Identifier of the run taking the lock
            ttl_seconds: Seconds after which the lock is considered stale

        Returns:
            True if the lock was acquired, False if another run holds it
        """
        now = int(time.time())
        try:
            self.table.put_item(
                Item={
                    'local_id': LOCK_ID,
                    'kind': 'lock',
                    'owner': owner,
                    'expires_at': now + ttl_seconds
                },
                ConditionExpression=Attr('local_id').not_exists() | Attr('expires_at').lt(now)
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Import lock is held by another run; {owner} not started")
                return False
            logger.error(f"Error acquiring import lock: {e}")
            raise

        logger.info(f"Import lock acquired by {owner}")
        return True

    def release_lock(self, owner: str) -> bool:
        """
        Release the run-level import lock if this owner holds it.

        Args:
            owner: Identifier passed to acquire_lock

        Returns:
            True if the lock was released
        """
        try:
            self.table.delete_item(
                Key={'local_id': LOCK_ID},
                ConditionExpression=Attr('owner').eq(owner)
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Import lock not held by {owner}")
                return False
            logger.error(f"Error releasing import lock: {e}")
            raise

        logger.info(f"Import lock released by {owner}")
        return True
