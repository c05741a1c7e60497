"""
Key-value substrate shared by the time-series, graph and embedding stores.

Items are addressed by a partition key and a sort key. Within a partition items
are kept ordered by sort key, which the stores use for range and prefix queries.
"""

import copy
import threading
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from .config import StoreConfig
from .json_utils import from_dynamo, to_dynamo
from .logging_config import get_logger

logger = get_logger(__name__)


class SubstrateError(Exception):
    """Custom exception for key-value substrate errors."""
    error_kind = 'SubstrateError'


class KeyValueSubstrate:
    """Interface of the key-value substrate."""

    def put(self, partition: str, sort_key: str, item: Dict[str, Any]) -> None:
        """Atomically write (or overwrite) a single item."""
        raise NotImplementedError

    def get(self, partition: str, sort_key: str) -> Optional[Dict[str, Any]]:
        """Read a single item, or None if absent."""
        raise NotImplementedError

    def query(self,
              partition: str,
              prefix: str = '',
              limit: Optional[int] = None,
              descending: bool = False) -> List[Dict[str, Any]]:
        """
        Read items of one partition ordered by sort key.

        Args:
            partition: Partition key
            prefix: Only return items whose sort key starts with this prefix
            limit: Maximum number of items to return (all if None)
            descending: Return the highest sort keys first

        Returns:
            List of items
        """
        raise NotImplementedError


class InMemorySubstrate(KeyValueSubstrate):
    """In-process substrate with per-key atomic writes."""

    def __init__(self, name: str = 'memory'):
        self.name = name
        self._partitions: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def put(self, partition: str, sort_key: str, item: Dict[str, Any]) -> None:
        stored = copy.deepcopy(item)
        with self._lock:
            self._partitions.setdefault(partition, {})[sort_key] = stored

    def get(self, partition: str, sort_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._partitions.get(partition, {}).get(sort_key)
            return copy.deepcopy(item) if item is not None else None

    def query(self,
              partition: str,
              prefix: str = '',
              limit: Optional[int] = None,
              descending: bool = False) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._partitions.get(partition, {})
            keys = sorted((k for k in rows if k.startswith(prefix)), reverse=descending)
            if limit is not None:
                keys = keys[:limit]
            return [copy.deepcopy(rows[k]) for k in keys]

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Return a deep copy of every partition, for comparisons in tests and tooling."""
        with self._lock:
            return copy.deepcopy(self._partitions)


class DynamoDBSubstrate(KeyValueSubstrate):
    """Amazon DynamoDB table with ``pk`` (hash) and ``sk`` (range) string keys."""

    def __init__(self, table_name: str, config: StoreConfig):
        """
        Initialize DynamoDB substrate.

        Args:
            table_name: Name of the DynamoDB table
            config: StoreConfig instance with connection parameters
        """
        self.table_name = table_name
        self.client = boto3.client('dynamodb', region_name=config.region, endpoint_url=config.endpoint_url)
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

        logger.info(f'Initialized DynamoDB substrate for table: {table_name}')

    def _serialize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in to_dynamo(item).items()}

    def _deserialize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        item = {k: self._deserializer.deserialize(v) for k, v in raw.items() if k not in ('pk', 'sk')}
        return from_dynamo(item)

    def put(self, partition: str, sort_key: str, item: Dict[str, Any]) -> None:
        record = dict(item, pk=partition, sk=sort_key)
        try:
            self.client.put_item(TableName=self.table_name, Item=self._serialize(record))
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error writing {partition}/{sort_key} to {self.table_name}: {e}')
            raise SubstrateError(f'Failed to put item: {e}') from e

    def get(self, partition: str, sort_key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get_item(TableName=self.table_name,
                                            Key={
                                                'pk': {
                                                    'S': partition
                                                },
                                                'sk': {
                                                    'S': sort_key
                                                }
                                            },
                                            ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error reading {partition}/{sort_key} from {self.table_name}: {e}')
            raise SubstrateError(f'Failed to get item: {e}') from e

        raw = response.get('Item')
        return self._deserialize(raw) if raw else None

    def query(self,
              partition: str,
              prefix: str = '',
              limit: Optional[int] = None,
              descending: bool = False) -> List[Dict[str, Any]]:
        request = {
            'TableName': self.table_name,
            'KeyConditionExpression': '#pk = :pk',
            'ExpressionAttributeNames': {
                '#pk': 'pk'
            },
            'ExpressionAttributeValues': {
                ':pk': {
                    'S': partition
                }
            },
            'ScanIndexForward': not descending
        }
        if prefix:
            request['KeyConditionExpression'] += ' AND begins_with(#sk, :prefix)'
            request['ExpressionAttributeNames']['#sk'] = 'sk'
            request['ExpressionAttributeValues'][':prefix'] = {'S': prefix}

        items = []
        try:
            while True:
                if limit is not None:
                    request['Limit'] = limit - len(items)
                response = self.client.query(**request)
                items.extend(self._deserialize(raw) for raw in response.get('Items', []))

                last_key = response.get('LastEvaluatedKey')
                if not last_key or (limit is not None and len(items) >= limit):
                    break
                request['ExclusiveStartKey'] = last_key

        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error querying partition {partition} in {self.table_name}: {e}')
            raise SubstrateError(f'Failed to query partition: {e}') from e

        logger.debug(f'Query on {self.table_name}/{partition} returned {len(items)} items')
        return items


# In-process tables, shared by every store built from the same configuration
_memory_tables: Dict[str, InMemorySubstrate] = {}
_memory_tables_lock = threading.Lock()


def create_substrate(config: StoreConfig, table_name: str) -> KeyValueSubstrate:
    """
    Build the substrate for one logical store.

    Args:
        config: StoreConfig instance selecting the backend
        table_name: Table backing the logical store

    Returns:
        KeyValueSubstrate instance

    Raises:
        SubstrateError: If the configured backend is unknown
    """
    backend = config.backend.lower()
    if backend == 'dynamodb':
        return DynamoDBSubstrate(table_name, config)

    if backend == 'memory':
        with _memory_tables_lock:
            if table_name not in _memory_tables:
                _memory_tables[table_name] = InMemorySubstrate(table_name)
            return _memory_tables[table_name]

    raise SubstrateError(f'Unsupported store backend: {config.backend}')


def reset_memory_tables() -> None:
    """Drop every in-process table."""
    with _memory_tables_lock:
        _memory_tables.clear()
