"""
Loads raw record batches from Amazon S3 or the local filesystem.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .logging_config import get_logger

logger = get_logger(__name__)

# Leading folder of an uploaded object key -> source kind
FOLDER_SOURCE_KINDS = {
    'weather': 'weather',
    'market': 'market',
    'markets': 'market',
    'prices': 'market',
    'crop': 'crop',
    'crops': 'crop',
    'scheme': 'scheme',
    'schemes': 'scheme',
    'location': 'location',
    'locations': 'location',
}


class RecordLoadError(Exception):
    """Custom exception for record batch loading errors."""
    error_kind = 'RecordLoadError'


def parse_s3_uri(location: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` into (bucket, key)."""
    bucket, _, key = location[len('s3://'):].partition('/')
    if not bucket or not key:
        raise RecordLoadError(f'Invalid S3 location: {location}')
    return bucket, key


def source_kind_for_key(key: str) -> Optional[str]:
    """Infer the source kind from an object key's leading folder (``crops/2024.json`` -> crop)."""
    folder = key.strip('/').split('/', 1)[0].lower()
    return FOLDER_SOURCE_KINDS.get(folder)


def parse_records(body: str, name: str = '') -> List[Dict[str, Any]]:
    """
    Decode a batch body into raw records.

    Accepts a JSON array, a ``{"records": [...]}`` envelope, JSON lines, or CSV
    (chosen by a ``.csv`` name suffix).

    Args:
        body: File contents
        name: File name or key, used to detect CSV

    Returns:
        List of raw record dicts

    Raises:
        RecordLoadError: If the body cannot be decoded
    """
    if name.lower().endswith('.csv'):
        return [dict(row) for row in csv.DictReader(io.StringIO(body))]

    text = body.strip()
    if not text:
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = [json.loads(line) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise RecordLoadError(f'Could not decode records from {name or "body"}: {e}')

    if isinstance(data, dict):
        data = data.get('records', [data])
    if not isinstance(data, list):
        raise RecordLoadError(f'Expected a list of records in {name or "body"}')
    return data


class RecordLoader:
    """Reads record batches referenced by ingestion notifications."""

    def __init__(self, s3_client: Any = None):
        self._s3 = s3_client

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = boto3.client('s3')
        return self._s3

    def load(self, location: str) -> List[Dict[str, Any]]:
        """
        Load the raw records stored at a location.

        Args:
            location: ``s3://bucket/key`` or a local file path

        Returns:
            List of raw record dicts

        Raises:
            RecordLoadError: If the location cannot be read or decoded
        """
        if location.startswith('s3://'):
            bucket, key = parse_s3_uri(location)
            try:
                response = self.s3.get_object(Bucket=bucket, Key=unquote_plus(key))
                body = response['Body'].read().decode('utf-8')
            except (ClientError, BotoCoreError) as e:
                logger.error(f'Error reading records from {location}: {e}')
                raise RecordLoadError(f'Failed to read {location}: {e}') from e
        else:
            try:
                body = Path(location).read_text(encoding='utf-8')
            except OSError as e:
                logger.error(f'Error reading records from {location}: {e}')
                raise RecordLoadError(f'Failed to read {location}: {e}') from e

        records = parse_records(body, location)
        logger.info(f'Loaded {len(records)} records from {location}')
        return records
